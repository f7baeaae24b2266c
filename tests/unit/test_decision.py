"""
Unit tests for rules loading and the decision engine.

Tests cover:
- Size guard parsing and evaluation
- Rules file validation
- Rule scan ordering and error propagation
- Schedule size guards
"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from vertiscale.decision.engine import DecisionEngine
from vertiscale.decision.rules import ScaleRule, ScaleSchedule, SizeGuard, load_rules
from vertiscale.errors import ConfigurationError, QueryFailed, UnexpectedResultShape

RULES_TOML = """
[[rules]]
query = 'sum(players_online) > 15'
action = 1

[[rules]]
query = 'sum(players_online) < 2'
action = -1

[[schedule]]
cron = "0 3 * * *"
action = -1
if_size = "> 0"

[[schedule]]
cron = "0 17 * * 5"
action = 1
"""


class TestSizeGuard:
    """Tests for SizeGuard."""

    @pytest.mark.parametrize(
        "expression,index,expected",
        [
            ("> 0", 1, True),
            ("> 0", 0, False),
            ("< 2", 1, True),
            ("< 2", 2, False),
            (">= 2", 2, True),
            ("<= 1", 2, False),
            ("= 1", 1, True),
            ("= 1", 2, False),
        ],
    )
    def test_matches(self, expression: str, index: int, expected: bool):
        assert SizeGuard.parse(expression).matches(index) is expected

    def test_double_equals_means_equals(self):
        """Test "==" behaves exactly like "="."""
        double = SizeGuard.parse("== 2")
        single = SizeGuard.parse("= 2")

        for index in range(5):
            assert double.matches(index) == single.matches(index)

    @pytest.mark.parametrize("expression", [">0", "!= 1", "> one", "", "> 1.5"])
    def test_invalid_expressions(self, expression: str):
        with pytest.raises(ValueError):
            SizeGuard.parse(expression)

    def test_str(self):
        assert str(SizeGuard.parse(">=  3")) == ">= 3"


class TestRuleModels:
    """Tests for rule and schedule validation."""

    def test_zero_action_rejected(self):
        with pytest.raises(ValidationError):
            ScaleRule(query="up", action=0)

    def test_empty_query_rejected(self):
        with pytest.raises(ValidationError):
            ScaleRule(query="", action=1)

    def test_schedule_parses_guard_string(self):
        entry = ScaleSchedule(cron="0 3 * * *", action=-1, if_size="> 0")

        assert entry.if_size == SizeGuard(op=">", operand=0)
        assert entry.to_dict() == {"cron": "0 3 * * *", "action": -1, "if_size": "> 0"}

    def test_schedule_blank_guard_is_none(self):
        entry = ScaleSchedule(cron="0 3 * * *", action=-1, if_size="")
        assert entry.if_size is None

    def test_invalid_cron_rejected(self):
        with pytest.raises(ValidationError):
            ScaleSchedule(cron="every day", action=1)

    def test_invalid_guard_rejected(self):
        with pytest.raises(ValidationError):
            ScaleSchedule(cron="0 3 * * *", action=1, if_size="~ 2")


class TestLoadRules:
    """Tests for load_rules."""

    def test_load(self, tmp_path: Path):
        path = tmp_path / "rules.toml"
        path.write_text(RULES_TOML)

        ruleset = load_rules(path)

        assert [r.action for r in ruleset.rules] == [1, -1]
        assert ruleset.rules[0].query == "sum(players_online) > 15"
        assert len(ruleset.schedule) == 2
        assert str(ruleset.schedule[0].if_size) == "> 0"
        assert ruleset.schedule[1].if_size is None

    def test_empty_file(self, tmp_path: Path):
        path = tmp_path / "rules.toml"
        path.write_text("")

        ruleset = load_rules(path)

        assert ruleset.rules == []
        assert ruleset.schedule == []

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigurationError):
            load_rules(tmp_path / "missing.toml")

    def test_invalid_toml(self, tmp_path: Path):
        path = tmp_path / "rules.toml"
        path.write_text("[[rules]\nquery = ")

        with pytest.raises(ConfigurationError):
            load_rules(path)

    def test_invalid_guard_fails_at_load(self, tmp_path: Path):
        """Test a bad size guard is reported when loading, not when firing."""
        path = tmp_path / "rules.toml"
        path.write_text('[[schedule]]\ncron = "0 3 * * *"\naction = 1\nif_size = "> big"\n')

        with pytest.raises(ConfigurationError) as exc_info:
            load_rules(path)

        assert "errors" in exc_info.value.details


class TestDecisionEngine:
    """Tests for DecisionEngine."""

    @pytest.mark.asyncio
    async def test_no_rules(self, make_metrics):
        engine = DecisionEngine(make_metrics())

        match = await engine.evaluate_rules([])

        assert match.matched is False
        assert match.action == 0

    @pytest.mark.asyncio
    async def test_first_matching_rule_wins(self, make_metrics, grow_rule, shrink_rule):
        """Test earlier rules take priority and later ones are not queried."""
        metrics = make_metrics({grow_rule.query: [object()], shrink_rule.query: [object()]})
        engine = DecisionEngine(metrics)

        match = await engine.evaluate_rules([grow_rule, shrink_rule])

        assert match.matched is True
        assert match.action == 1
        assert match.rule_index == 0
        assert metrics.queries == [grow_rule.query]

    @pytest.mark.asyncio
    async def test_empty_vector_is_false(self, make_metrics, grow_rule, shrink_rule):
        metrics = make_metrics({shrink_rule.query: [object(), object()]})
        engine = DecisionEngine(metrics)

        match = await engine.evaluate_rules([grow_rule, shrink_rule])

        assert match.action == -1
        assert match.rule == shrink_rule
        assert match.samples == 2
        assert match.to_dict()["query"] == shrink_rule.query

    @pytest.mark.asyncio
    async def test_nothing_matches(self, make_metrics, grow_rule, shrink_rule):
        engine = DecisionEngine(make_metrics())

        match = await engine.evaluate_rules([grow_rule, shrink_rule])

        assert match.matched is False

    @pytest.mark.asyncio
    async def test_query_failure_aborts_scan(self, make_metrics, grow_rule, shrink_rule):
        """Test a failing rule is not treated as false."""
        metrics = make_metrics(
            {grow_rule.query: QueryFailed("boom"), shrink_rule.query: [object()]}
        )
        engine = DecisionEngine(metrics)

        with pytest.raises(QueryFailed):
            await engine.evaluate_rules([grow_rule, shrink_rule])
        assert metrics.queries == [grow_rule.query]

    @pytest.mark.asyncio
    async def test_unexpected_shape_propagates(self, make_metrics, grow_rule):
        metrics = make_metrics({grow_rule.query: UnexpectedResultShape(grow_rule.query, "matrix")})
        engine = DecisionEngine(metrics)

        with pytest.raises(UnexpectedResultShape):
            await engine.evaluate_rules([grow_rule])

    def test_schedule_without_guard(self, make_metrics):
        engine = DecisionEngine(make_metrics())
        entry = ScaleSchedule(cron="0 3 * * *", action=-1)

        assert engine.evaluate_schedule(entry, 0) is True

    def test_schedule_with_guard(self, make_metrics):
        engine = DecisionEngine(make_metrics())
        entry = ScaleSchedule(cron="0 3 * * *", action=-1, if_size="> 0")

        assert engine.evaluate_schedule(entry, 0) is False
        assert engine.evaluate_schedule(entry, 1) is True
