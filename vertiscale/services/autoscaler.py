"""
Autoscaler Service.

Connects the decision engine to the orchestrator for both triggers:
- the periodic rule cycle (metric rules, first match wins)
- scheduled entries (cron, optionally gated on the current size)

Expected conditions (nothing to do, busy, too soon) end an attempt quietly.
Failures are logged and the next cycle proceeds as normal.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from vertiscale.decision.engine import DecisionEngine
from vertiscale.decision.rules import ScaleRule, ScaleSchedule
from vertiscale.errors import ScaleSkipped, ScalingError
from vertiscale.monitoring.metrics import ScalingMetrics
from vertiscale.services.orchestrator import ScaleResult, ScalingOrchestrator
from vertiscale.utils.logging import get_logger, log_context

logger = get_logger(__name__)


class TriggerType(str, Enum):
    """What started a scale attempt."""

    RULE = "rule"
    SCHEDULE = "schedule"


class AttemptOutcome(str, Enum):
    """How a scale attempt ended."""

    SCALED = "scaled"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class ScaleAttempt:
    """Record of one scale attempt."""

    attempt_id: str
    trigger: TriggerType
    direction: int
    outcome: AttemptOutcome
    reason: str = ""
    error_code: str | None = None
    result: ScaleResult | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "attempt_id": self.attempt_id,
            "trigger": self.trigger.value,
            "direction": self.direction,
            "outcome": self.outcome.value,
            "reason": self.reason,
            "error_code": self.error_code,
            "result": self.result.to_dict() if self.result else None,
            "created_at": self.created_at.isoformat(),
        }


class AutoscalerService:
    """
    Evaluates rules and schedule entries and scales through the orchestrator.
    """

    def __init__(
        self,
        engine: DecisionEngine,
        orchestrator: ScalingOrchestrator,
        rules: list[ScaleRule] | None = None,
        schedule: list[ScaleSchedule] | None = None,
        metrics: ScalingMetrics | None = None,
        history_size: int = 100,
    ) -> None:
        """
        Initialize autoscaler service.

        Args:
            engine: Decision engine
            orchestrator: Scaling orchestrator
            rules: Metric rules in priority order
            schedule: Scheduled entries
            metrics: Optional metrics exporter
            history_size: Number of attempts kept in history
        """
        self.engine = engine
        self.orchestrator = orchestrator
        self.rules = list(rules or [])
        self.schedule = list(schedule or [])
        self._metrics = metrics
        self._history: deque[ScaleAttempt] = deque(maxlen=history_size)

        # Statistics
        self._stats = {
            "rule_cycles": 0,
            "cycles_skipped": 0,
            "cycles_failed": 0,
            "schedule_fires": 0,
            "scales_completed": 0,
            "scales_skipped": 0,
            "scales_failed": 0,
        }

        logger.info(
            "Autoscaler service initialized",
            rules=len(self.rules),
            schedule=len(self.schedule),
        )

    async def run_rule_cycle(self) -> ScaleAttempt | None:
        """
        Run one rule evaluation cycle.

        Returns:
            The scale attempt, or None when no attempt was made
        """
        self._stats["rule_cycles"] += 1

        if self.orchestrator.is_scaling:
            logger.info("Scaling in progress, skipping")
            self._stats["cycles_skipped"] += 1
            self._record_cycle("skipped")
            return None

        try:
            match = await self.engine.evaluate_rules(self.rules)
        except ScalingError as e:
            logger.error("Rule evaluation failed", error=str(e), details=e.details)
            self._stats["cycles_failed"] += 1
            self._record_cycle("error")
            return None

        if not match.matched:
            logger.info("No scaling action needed")
            self._record_cycle("no_match")
            return None

        self._record_cycle("matched")
        return await self._attempt(TriggerType.RULE, match.action, reason=match.rule.query)

    async def run_schedule(self, entry: ScaleSchedule) -> ScaleAttempt | None:
        """
        Handle a fired schedule entry.

        Returns:
            The scale attempt, or None when the size guard blocked it
        """
        self._stats["schedule_fires"] += 1
        logger.info("Considering scheduled scale", **entry.to_dict())

        if entry.if_size is not None:
            try:
                current_index = await self.orchestrator.current_index()
            except ScalingError as e:
                logger.error("Failed to get current size", error=str(e))
                return self._finish(
                    TriggerType.SCHEDULE,
                    entry.action,
                    AttemptOutcome.FAILED,
                    reason=entry.cron,
                    error=e,
                )
            if not self.engine.evaluate_schedule(entry, current_index):
                return None

        return await self._attempt(TriggerType.SCHEDULE, entry.action, reason=entry.cron)

    async def _attempt(self, trigger: TriggerType, direction: int, reason: str) -> ScaleAttempt:
        with log_context(trigger=trigger.value, direction=direction):
            try:
                if not await self.orchestrator.can_scale(direction):
                    return self._finish(
                        trigger,
                        direction,
                        AttemptOutcome.SKIPPED,
                        reason=reason,
                        error_code="CANNOT_SCALE",
                    )
                result = await self.orchestrator.execute(direction)
            except ScaleSkipped as e:
                logger.info("Scale skipped", reason=e.message, error_code=e.error_code)
                return self._finish(
                    trigger, direction, AttemptOutcome.SKIPPED, reason=reason, error=e
                )
            except ScalingError as e:
                logger.error("Failed to scale", error=str(e), error_code=e.error_code)
                return self._finish(
                    trigger, direction, AttemptOutcome.FAILED, reason=reason, error=e
                )

            return self._finish(
                trigger, direction, AttemptOutcome.SCALED, reason=reason, result=result
            )

    def _finish(
        self,
        trigger: TriggerType,
        direction: int,
        outcome: AttemptOutcome,
        reason: str = "",
        error: ScaleSkipped | ScalingError | None = None,
        error_code: str | None = None,
        result: ScaleResult | None = None,
    ) -> ScaleAttempt:
        attempt = ScaleAttempt(
            attempt_id=str(uuid4()),
            trigger=trigger,
            direction=direction,
            outcome=outcome,
            reason=reason,
            error_code=error.error_code if error else error_code,
            result=result,
        )
        self._history.append(attempt)

        if outcome == AttemptOutcome.SCALED:
            self._stats["scales_completed"] += 1
        elif outcome == AttemptOutcome.SKIPPED:
            self._stats["scales_skipped"] += 1
        else:
            self._stats["scales_failed"] += 1

        if self._metrics:
            self._metrics.record_scale_attempt(
                trigger.value,
                direction,
                outcome.value,
                duration_seconds=result.duration_seconds if result else None,
            )
        return attempt

    def _record_cycle(self, result: str) -> None:
        if self._metrics:
            self._metrics.record_rule_cycle(result)

    def get_history(self, limit: int = 20) -> list[ScaleAttempt]:
        """Most recent attempts first."""
        return list(reversed(self._history))[:limit]

    def get_stats(self) -> dict[str, Any]:
        """Get service statistics."""
        return {
            **self._stats,
            "rules": len(self.rules),
            "schedule": len(self.schedule),
            "orchestrator": self.orchestrator.get_state(),
        }


# Global instance
_autoscaler_service: AutoscalerService | None = None


def get_autoscaler_service() -> AutoscalerService:
    """Get the global autoscaler service."""
    if _autoscaler_service is None:
        raise RuntimeError("Autoscaler service not initialized")
    return _autoscaler_service


def init_autoscaler_service(**kwargs: Any) -> AutoscalerService:
    """Initialize the global autoscaler service."""
    global _autoscaler_service
    _autoscaler_service = AutoscalerService(**kwargs)
    return _autoscaler_service
