"""
Unit tests for configuration, logging, errors, metrics and app wiring.
"""

from pathlib import Path

import pytest
import structlog
from pydantic import ValidationError

from vertiscale.config.settings import AppSettings, RconSettings, ScalingSettings, get_settings
from vertiscale.app import Application, build_provider, load_settings, main, parse_args
from vertiscale.decision.rules import RuleSet, ScaleRule, load_rules
from vertiscale.errors import (
    ConfigurationError,
    ProviderError,
    RecoveryFailed,
    ResizeFailed,
    SizeNotFound,
    TooSoon,
)
from vertiscale.execution.base import MockProvider
from vertiscale.execution.hetzner import HetznerProvider
from vertiscale.monitoring.metrics import ScalingMetrics
from vertiscale.services.scheduler import RULE_CYCLE_TASK_ID
from vertiscale.utils.logging import log_context, setup_logging


@pytest.fixture(autouse=True)
def clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# =============================================================================
# Settings
# =============================================================================


class TestSettings:
    """Tests for settings loading."""

    def test_defaults(self):
        scaling = ScalingSettings()

        assert scaling.interval_seconds == 60
        assert scaling.min_interval_seconds == 3600
        assert scaling.action_max_attempts == 24
        assert scaling.drain_timeout_seconds == 300

    def test_allowed_sizes_from_env(self, monkeypatch):
        monkeypatch.setenv("SCALING_ALLOWED_SIZES", "cx22, cx32,,cx42")

        assert ScalingSettings().allowed_sizes == ["cx22", "cx32", "cx42"]

    def test_nested_settings_from_env(self, monkeypatch):
        monkeypatch.setenv("HETZNER_SERVER_NAME", "mc")
        monkeypatch.setenv("RCON_ADDRESS", "mc.internal:25575")
        monkeypatch.setenv("APP_LOG_LEVEL", "DEBUG")

        settings = get_settings()

        assert settings.hetzner.server_name == "mc"
        assert settings.rcon.address == "mc.internal:25575"
        assert settings.log_level == "DEBUG"
        assert get_settings() is settings

    @pytest.mark.parametrize("address", ["localhost", ":25575", "host:port"])
    def test_invalid_rcon_address(self, address: str):
        with pytest.raises(ValidationError):
            RconSettings(address=address)

    def test_invalid_min_interval(self):
        with pytest.raises(ValidationError):
            ScalingSettings(min_interval_seconds=-1)


# =============================================================================
# Logging
# =============================================================================


class TestLogging:
    """Tests for logging helpers."""

    def test_setup_logging(self):
        setup_logging(level="DEBUG", log_format="console")
        setup_logging(level="INFO", log_format="json")

    def test_log_context_binds_and_unbinds(self):
        with log_context(trigger="rule", direction=1):
            bound = structlog.contextvars.get_contextvars()
            assert bound["trigger"] == "rule"
            assert bound["direction"] == 1

        assert "trigger" not in structlog.contextvars.get_contextvars()


# =============================================================================
# Errors
# =============================================================================


class TestErrors:
    """Tests for the exception hierarchy."""

    def test_default_error_code(self):
        error = ResizeFailed("server type locked")

        assert error.error_code == "RESIZEFAILED"
        assert str(error) == "RESIZEFAILED: server type locked"
        assert error.to_dict()["message"] == "server type locked"

    def test_too_soon_details(self, clock):
        last = clock.now
        clock.advance(hours=1)
        error = TooSoon(last, clock.now)

        assert error.error_code == "TOO_SOON"
        assert error.next_allowed_at == clock.now
        assert "next_allowed_at" in error.to_dict()["details"]

    def test_recovery_failed_keeps_both(self):
        error = RecoveryFailed(ResizeFailed("a"), ProviderError("b"))

        assert isinstance(error.resize_error, ResizeFailed)
        assert isinstance(error.recovery_error, ProviderError)
        assert error.error_code == "RECOVERY_FAILED"


# =============================================================================
# Metrics
# =============================================================================


class TestScalingMetrics:
    """Tests for the Prometheus exporter."""

    def test_records(self):
        metrics = ScalingMetrics()
        registry = metrics.get_registry()

        metrics.record_scale_attempt("schedule", 1, "scaled", duration_seconds=12.5)
        metrics.record_scaled(2)
        metrics.set_in_progress(True)
        metrics.record_rule_cycle("no_match")
        metrics.record_recovery(True)

        assert (
            registry.get_sample_value(
                "vertiscale_scale_attempts_total",
                {"trigger": "schedule", "direction": "+1", "outcome": "scaled"},
            )
            == 1
        )
        assert registry.get_sample_value("vertiscale_ladder_index") == 2
        assert registry.get_sample_value("vertiscale_scaling_in_progress") == 1
        assert (
            registry.get_sample_value("vertiscale_rule_cycles_total", {"result": "no_match"}) == 1
        )
        assert registry.get_sample_value("vertiscale_recovery_total", {"outcome": "success"}) == 1
        assert registry.get_sample_value("vertiscale_last_scaled_timestamp_seconds") > 0

    def test_generate(self):
        metrics = ScalingMetrics(prefix="test")
        metrics.record_rule_cycle("matched")

        assert b"test_rule_cycles_total" in metrics.generate_metrics()
        assert metrics.get_content_type().startswith("text/plain")


# =============================================================================
# Application
# =============================================================================


def settings_with_sizes(*sizes: str) -> AppSettings:
    return AppSettings(scaling=ScalingSettings(allowed_sizes=list(sizes), action_poll_seconds=0.01))


class TestApplication:
    """Tests for application wiring."""

    def test_parse_args(self):
        args = parse_args(["--rules-file", "r.toml", "--once", "--log-level", "DEBUG"])

        assert args.rules_file == Path("r.toml")
        assert args.once is True
        assert args.log_level == "DEBUG"

    def test_build_provider_requires_token(self, monkeypatch):
        monkeypatch.delenv("HETZNER_API_TOKEN", raising=False)
        monkeypatch.setenv("HETZNER_SERVER_NAME", "mc")

        with pytest.raises(ConfigurationError, match="HETZNER_API_TOKEN"):
            build_provider(AppSettings())

    def test_build_provider(self, monkeypatch):
        monkeypatch.setenv("HETZNER_API_TOKEN", "token")
        monkeypatch.setenv("HETZNER_SERVER_NAME", "mc")
        monkeypatch.setenv("SCALING_ACTION_MAX_ATTEMPTS", "10")

        provider = build_provider(AppSettings())

        assert isinstance(provider, HetznerProvider)
        assert provider.config.max_attempts == 10

    def test_empty_allowed_sizes(self, monkeypatch, make_metrics, drain):
        monkeypatch.delenv("SCALING_ALLOWED_SIZES", raising=False)

        with pytest.raises(ConfigurationError, match="SCALING_ALLOWED_SIZES"):
            Application(
                AppSettings(), RuleSet(), MockProvider(), prometheus=make_metrics(), drain=drain
            )

    @pytest.mark.asyncio
    async def test_prepare_and_run_once(self, make_metrics, drain):
        """Test a single cycle with a matching rule scales the mock instance."""
        rule = ScaleRule(query="sum(players_online) > 15", action=1)
        provider = MockProvider()
        metrics = ScalingMetrics()
        app = Application(
            settings_with_sizes("small", "medium", "large"),
            RuleSet(rules=[rule]),
            provider,
            prometheus=make_metrics({rule.query: [object()]}),
            drain=drain,
            metrics=metrics,
        )

        await app.prepare()
        assert metrics.get_registry().get_sample_value("vertiscale_ladder_index") == 1

        assert await app.run_once() is True
        assert provider.current_size == "large"
        assert app.scheduler.get_task(RULE_CYCLE_TASK_ID).run_count == 1

    @pytest.mark.asyncio
    async def test_run_once_reports_failure(self, make_metrics, drain):
        rule = ScaleRule(query="sum(players_online) > 15", action=1)
        provider = MockProvider()
        provider.resize_error = "unavailable"
        app = Application(
            settings_with_sizes("small", "medium", "large"),
            RuleSet(rules=[rule]),
            provider,
            prometheus=make_metrics({rule.query: [object()]}),
            drain=drain,
        )

        await app.prepare()

        assert await app.run_once() is False

    @pytest.mark.asyncio
    async def test_prepare_rejects_size_outside_ladder(self, make_metrics, drain):
        app = Application(
            settings_with_sizes("small", "large"),
            RuleSet(),
            MockProvider(),
            prometheus=make_metrics(),
            drain=drain,
        )

        with pytest.raises(SizeNotFound):
            await app.prepare()

    def test_main_missing_rules_file(self, tmp_path: Path):
        assert main(["--rules-file", str(tmp_path / "missing.toml")]) == 1

    def test_main_invalid_rules_file(self, tmp_path: Path, monkeypatch):
        """Test a rule with a zero action fails startup while loading rules."""
        monkeypatch.setenv("HETZNER_API_TOKEN", "token")
        monkeypatch.setenv("HETZNER_SERVER_NAME", "mc")
        monkeypatch.setenv("SCALING_ALLOWED_SIZES", "cx22,cx32")
        started = []
        monkeypatch.setattr("vertiscale.app.run", lambda *args, **kwargs: started.append(args))
        rules_file = tmp_path / "rules.toml"
        rules_file.write_text('[[rules]]\nquery = "up"\naction = 0\n')

        with pytest.raises(ConfigurationError, match="invalid rules file"):
            load_rules(rules_file)
        assert main(["--rules-file", str(rules_file)]) == 1
        assert started == []

    def test_main_invalid_environment(self, tmp_path: Path, monkeypatch):
        """Test a bad environment value exits 1 instead of raising."""
        monkeypatch.setenv("RCON_ADDRESS", "foo")
        started = []
        monkeypatch.setattr("vertiscale.app.run", lambda *args, **kwargs: started.append(args))
        rules_file = tmp_path / "rules.toml"
        rules_file.write_text('[[rules]]\nquery = "up"\naction = 1\n')

        with pytest.raises(ConfigurationError, match="invalid settings"):
            load_settings()
        get_settings.cache_clear()
        assert main(["--rules-file", str(rules_file)]) == 1
        assert started == []

    def test_main_missing_token(self, tmp_path: Path, monkeypatch):
        monkeypatch.delenv("HETZNER_API_TOKEN", raising=False)
        monkeypatch.setenv("SCALING_ALLOWED_SIZES", "cx22,cx32")
        rules_file = tmp_path / "rules.toml"
        rules_file.write_text('[[rules]]\nquery = "up"\naction = 1\n')

        assert main(["--rules-file", str(rules_file), "--once"]) == 1
