"""
Decision Engine for rule- and schedule-driven scaling.

Responsibilities:
- Scan metric rules in priority order, first match wins
- Gate scheduled actions on the current ladder index
- Own no state; every evaluation reads the world afresh
"""

from dataclasses import dataclass
from typing import Any, Protocol

from vertiscale.collectors.prometheus import Sample
from vertiscale.decision.rules import ScaleRule, ScaleSchedule
from vertiscale.utils.logging import get_logger

logger = get_logger(__name__)


class MetricsSource(Protocol):
    """Anything that can run an instant query."""

    async def query(self, query: str) -> list[Sample]: ...


@dataclass
class RuleMatch:
    """Outcome of a rule scan."""

    matched: bool
    action: int = 0
    rule: ScaleRule | None = None
    rule_index: int | None = None
    samples: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "matched": self.matched,
            "action": self.action,
            "query": self.rule.query if self.rule else None,
            "rule_index": self.rule_index,
            "samples": self.samples,
        }


class DecisionEngine:
    """
    Turns rules and schedule entries into scale intents.

    Rules are polled continuously and are cheap to re-evaluate. Schedule
    entries are event driven; when one fires only its size guard is checked
    here. Both kinds of intent then go through the same orchestrator gate.
    """

    def __init__(self, metrics: MetricsSource) -> None:
        """
        Initialize decision engine.

        Args:
            metrics: Metrics source used to evaluate rule queries
        """
        self._metrics = metrics

    async def evaluate_rule(self, rule: ScaleRule) -> tuple[bool, int]:
        """
        Evaluate one rule.

        Returns:
            (condition_true, sample_count)

        Raises:
            QueryFailed: The query could not be executed
            UnexpectedResultShape: The query did not return a vector
        """
        samples = await self._metrics.query(rule.query)
        logger.debug("Evaluated rule", query=rule.query, samples=len(samples))
        return len(samples) > 0, len(samples)

    async def evaluate_rules(self, rules: list[ScaleRule]) -> RuleMatch:
        """
        Scan rules in order and return the first one whose condition holds.

        Errors propagate; a rule that cannot be evaluated aborts the scan
        rather than being treated as false.
        """
        for index, rule in enumerate(rules):
            matched, samples = await self.evaluate_rule(rule)
            if not matched:
                logger.debug("Rule not met", query=rule.query)
                continue

            logger.info("Rule met", query=rule.query, action=rule.action, rule_index=index)
            return RuleMatch(
                matched=True,
                action=rule.action,
                rule=rule,
                rule_index=index,
                samples=samples,
            )

        return RuleMatch(matched=False)

    def evaluate_schedule(self, entry: ScaleSchedule, current_index: int) -> bool:
        """
        Decide whether a fired schedule entry may act.

        Args:
            entry: The schedule entry that fired
            current_index: Current position in the size ladder

        Returns:
            True when the entry has no size guard or the guard holds
        """
        if entry.if_size is None:
            return True

        allowed = entry.if_size.matches(current_index)
        if not allowed:
            logger.info(
                "Size guard not met",
                cron=entry.cron,
                guard=str(entry.if_size),
                current_index=current_index,
            )
        return allowed
