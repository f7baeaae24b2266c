"""
Application wiring and command line entry point.

Startup:
1. Logging, settings and rules file
2. Locate the managed instance (fatal if missing)
3. Start the scheduler; the first rule cycle runs immediately
4. Run until SIGINT/SIGTERM, then stop gracefully
"""

import argparse
import asyncio
import signal
import sys
from collections.abc import Sequence
from datetime import timedelta
from pathlib import Path

from pydantic import ValidationError

from vertiscale.config.settings import AppSettings, get_settings
from vertiscale import __version__
from vertiscale.collectors.prometheus import PrometheusMetrics
from vertiscale.decision.engine import DecisionEngine
from vertiscale.decision.rules import RuleSet, load_rules
from vertiscale.drain.coordinator import DrainCoordinator
from vertiscale.errors import AutoscalerError, ConfigurationError
from vertiscale.execution.base import BaseProvider
from vertiscale.execution.hetzner import HetznerConfig, HetznerProvider
from vertiscale.execution.resize import ResizeCoordinator
from vertiscale.monitoring.metrics import ScalingMetrics, init_metrics
from vertiscale.services.autoscaler import (
    AttemptOutcome,
    AutoscalerService,
    init_autoscaler_service,
)
from vertiscale.services.orchestrator import ScalingOrchestrator
from vertiscale.services.scheduler import (
    RULE_CYCLE_TASK_ID,
    SchedulerService,
    create_autoscaler_scheduler,
)
from vertiscale.utils.logging import get_logger, setup_logging

logger = get_logger(__name__)


def load_settings() -> AppSettings:
    """
    Load settings from the environment.

    Raises:
        ConfigurationError: A setting has an invalid value
    """
    try:
        return get_settings()
    except ValidationError as e:
        raise ConfigurationError("invalid settings", details={"errors": str(e)}) from e


def build_provider(settings: AppSettings) -> HetznerProvider:
    """Create the cloud provider from settings."""
    hetzner = settings.hetzner
    if not hetzner.api_token:
        raise ConfigurationError("HETZNER_API_TOKEN is not set")
    if not hetzner.server_name:
        raise ConfigurationError("HETZNER_SERVER_NAME is not set")

    return HetznerProvider(
        HetznerConfig(
            api_token=hetzner.api_token,
            server_name=hetzner.server_name,
            api_url=hetzner.api_url,
            request_timeout=hetzner.request_timeout,
            server_types_cache_seconds=hetzner.server_types_cache_seconds,
            poll_interval_seconds=settings.scaling.action_poll_seconds,
            max_attempts=settings.scaling.action_max_attempts,
            stop_timeout_seconds=settings.scaling.stop_timeout_seconds,
        )
    )


class Application:
    """
    The running autoscaler.

    Owns the long-lived collaborators and their lifecycle.
    """

    def __init__(
        self,
        settings: AppSettings,
        rules: RuleSet,
        provider: BaseProvider,
        prometheus: PrometheusMetrics | None = None,
        drain: DrainCoordinator | None = None,
        metrics: ScalingMetrics | None = None,
    ) -> None:
        """
        Initialize application.

        Args:
            settings: Application settings
            rules: Loaded rules file
            provider: Cloud provider for the managed instance
            prometheus: Metrics source (built from settings if None)
            drain: Drain coordinator (built from settings if None)
            metrics: Optional metrics exporter
        """
        if not settings.scaling.allowed_sizes:
            raise ConfigurationError("SCALING_ALLOWED_SIZES is empty")

        self.settings = settings
        self.provider = provider
        self.metrics = metrics
        scaling = settings.scaling

        self.prometheus = prometheus or PrometheusMetrics(
            prometheus_url=settings.prometheus.url,
            username=settings.prometheus.username,
            password=settings.prometheus.password,
            query_timeout=settings.prometheus.query_timeout,
        )
        drain = drain or DrainCoordinator.for_rcon(
            settings.rcon.address,
            settings.rcon.password,
            scaling.pre_drain_message,
            command_timeout=settings.rcon.timeout,
            poll_interval_seconds=scaling.drain_poll_seconds,
            timeout_seconds=scaling.drain_timeout_seconds,
        )

        resize = ResizeCoordinator(
            provider,
            scaling.allowed_sizes,
            poll_interval_seconds=scaling.action_poll_seconds,
            max_attempts=scaling.action_max_attempts,
        )
        self.orchestrator = ScalingOrchestrator(
            resize_coordinator=resize,
            drain_coordinator=drain,
            min_interval=timedelta(seconds=scaling.min_interval_seconds),
            metrics=metrics,
        )
        self.autoscaler: AutoscalerService = init_autoscaler_service(
            engine=DecisionEngine(self.prometheus),
            orchestrator=self.orchestrator,
            rules=rules.rules,
            schedule=rules.schedule,
            metrics=metrics,
        )
        self.scheduler: SchedulerService = create_autoscaler_scheduler(
            self.autoscaler,
            interval_seconds=scaling.interval_seconds,
            timezone=scaling.schedule_timezone,
            stop_timeout_seconds=scaling.stop_timeout_seconds,
        )

    async def prepare(self) -> None:
        """
        Locate the instance and check it is on the allowed ladder.

        Raises:
            ConfigurationError: The instance does not exist
        """
        state = await self.provider.locate()
        index, ladder = await self.orchestrator.resize_coordinator.get_current_and_available()
        logger.info(
            "Instance ready",
            server=state.name,
            size=state.size,
            ladder=list(ladder.sizes),
            ladder_index=index,
        )
        if self.metrics:
            self.metrics.set_ladder_index(index)

    async def run_once(self) -> bool:
        """Run a single rule cycle. Returns False when the attempt failed."""
        attempt = await self.scheduler.run_task_now(RULE_CYCLE_TASK_ID)
        return attempt is None or attempt.outcome != AttemptOutcome.FAILED

    async def run_forever(self, stop_event: asyncio.Event) -> None:
        """Run the scheduler until `stop_event` is set."""
        await self.scheduler.start()
        logger.info(
            "Autoscaler started",
            version=__version__,
            interval_seconds=self.settings.scaling.interval_seconds,
            rules=len(self.autoscaler.rules),
            schedule=len(self.autoscaler.schedule),
        )
        try:
            await stop_event.wait()
        finally:
            logger.info("Shutting down autoscaler")
            await self.scheduler.stop()

    async def close(self) -> None:
        """Release network clients."""
        await self.prometheus.close()
        await self.provider.close()


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Not available on Windows event loops; KeyboardInterrupt still applies
            pass


async def run(settings: AppSettings, rules: RuleSet, once: bool = False) -> int:
    """Build the application, run it and return the process exit code."""
    metrics = init_metrics()
    if settings.metrics_port:
        metrics.serve(settings.metrics_port)

    app = Application(settings, rules, build_provider(settings), metrics=metrics)
    try:
        await app.prepare()
        if once:
            return 0 if await app.run_once() else 1

        stop_event = asyncio.Event()
        _install_signal_handlers(stop_event)
        await app.run_forever(stop_event)
        return 0
    finally:
        await app.close()


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="vertiscale",
        description="Vertical autoscaler for a single game server instance",
    )
    parser.add_argument(
        "--rules-file",
        type=Path,
        default=None,
        help="TOML rules file (default: APP_RULES_FILE or rules.toml)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Log level override",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single rule cycle and exit",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the vertiscale command."""
    args = parse_args(argv)
    try:
        settings = load_settings()
    except ConfigurationError as e:
        setup_logging(level=args.log_level or "INFO", log_format="console")
        logger.error("Startup failed", error=str(e), details=e.details)
        return 1
    setup_logging(level=args.log_level)

    try:
        rules = load_rules(args.rules_file or settings.rules_file)
        logger.info(
            "Loaded rules",
            rules=len(rules.rules),
            schedule=len(rules.schedule),
        )
        return asyncio.run(run(settings, rules, once=args.once))
    except AutoscalerError as e:
        logger.error("Startup failed", error=str(e), details=e.details)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
