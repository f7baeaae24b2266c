"""
Scaling Orchestrator.

Owns the only shared mutable state of the autoscaler: the exclusivity lock,
the current phase and the time of the last successful scale.

Phases of one attempt:
    idle -> locked -> draining -> provider_stopping -> resizing -> idle

Responsibilities:
- Enforce one scale at a time (try-lock, fail fast)
- Enforce the minimum interval between successful scales
- Sequence drain, instance stop and resize
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from vertiscale.drain.coordinator import DrainCoordinator, DrainResult
from vertiscale.errors import RecoveryFailed, ResizeFailed, ScalingInProgress, TooSoon
from vertiscale.execution.base import BaseProvider
from vertiscale.execution.resize import ResizeCoordinator
from vertiscale.monitoring.metrics import ScalingMetrics
from vertiscale.utils.logging import get_logger

logger = get_logger(__name__)


class ScalingPhase(str, Enum):
    """Phase of the orchestrator."""

    IDLE = "idle"
    LOCKED = "locked"
    DRAINING = "draining"
    PROVIDER_STOPPING = "provider_stopping"
    RESIZING = "resizing"


@dataclass
class ScaleResult:
    """A completed scale."""

    direction: int
    from_size: str
    to_size: str
    from_index: int
    to_index: int
    started_at: datetime
    completed_at: datetime
    drain: DrainResult | None = None

    @property
    def duration_seconds(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "direction": self.direction,
            "from_size": self.from_size,
            "to_size": self.to_size,
            "from_index": self.from_index,
            "to_index": self.to_index,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "duration_seconds": self.duration_seconds,
            "drain": self.drain.to_dict() if self.drain else None,
        }


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ScalingOrchestrator:
    """
    Runs a complete scale: drain, stop, resize.

    Nothing is persisted. A restart forgets `last_scaled_at`, so the first
    scale after a restart is never held back by the minimum interval.
    """

    def __init__(
        self,
        resize_coordinator: ResizeCoordinator,
        drain_coordinator: DrainCoordinator,
        min_interval: timedelta = timedelta(hours=1),
        provider: BaseProvider | None = None,
        clock: Callable[[], datetime] = _utcnow,
        metrics: ScalingMetrics | None = None,
    ) -> None:
        """
        Initialize scaling orchestrator.

        Args:
            resize_coordinator: Ladder resolution and resize with recovery
            drain_coordinator: Graceful game server shutdown
            min_interval: Minimum time between successful scales
            provider: Provider used to stop the instance (defaults to the
                resize coordinator's provider)
            clock: Source of the current time (timezone aware)
            metrics: Optional metrics exporter
        """
        self.resize_coordinator = resize_coordinator
        self.drain_coordinator = drain_coordinator
        self.provider = provider or resize_coordinator.provider
        self.min_interval = min_interval
        self._clock = clock
        self._metrics = metrics

        self._lock = asyncio.Lock()
        self._phase = ScalingPhase.IDLE
        self._last_scaled_at: datetime | None = None

    @property
    def phase(self) -> ScalingPhase:
        return self._phase

    @property
    def is_scaling(self) -> bool:
        return self._lock.locked()

    @property
    def last_scaled_at(self) -> datetime | None:
        return self._last_scaled_at

    def next_allowed_at(self) -> datetime | None:
        if self._last_scaled_at is None:
            return None
        return self._last_scaled_at + self.min_interval

    async def current_index(self) -> int:
        """Current position on a freshly built ladder."""
        index, _ = await self.resize_coordinator.get_current_and_available()
        return index

    async def can_scale(self, direction: int) -> bool:
        """
        Whether a move in `direction` would change the size.

        Ignores the lock and the minimum interval; those are checked by
        execute().

        Raises:
            SizeNotFound: The current size is not in the allowed ladder
        """
        index, ladder = await self.resize_coordinator.get_current_and_available()
        ok = ladder.can_move(index, direction)
        if not ok:
            logger.info(
                "No eligible size",
                current=ladder[index],
                direction=direction,
                sizes=list(ladder.sizes),
            )
        return ok

    def _check_interval(self) -> None:
        next_allowed = self.next_allowed_at()
        if next_allowed is not None and self._clock() < next_allowed:
            raise TooSoon(self._last_scaled_at, next_allowed)

    async def execute(self, direction: int) -> ScaleResult:
        """
        Scale one step in `direction`.

        Raises:
            ScalingInProgress: Another scale holds the lock
            TooSoon: The minimum interval has not elapsed
            CannotScale: Already at the end of the ladder
            ScalingError: Any failure during drain, stop or resize
        """
        if self._lock.locked():
            raise ScalingInProgress()

        async with self._lock:
            self._phase = ScalingPhase.LOCKED
            self._set_in_progress(True)
            try:
                return await self._execute(direction)
            finally:
                self._phase = ScalingPhase.IDLE
                self._set_in_progress(False)

    async def _execute(self, direction: int) -> ScaleResult:
        self._check_interval()
        started_at = self._clock()

        from_index, ladder = await self.resize_coordinator.get_current_and_available()
        to_index, target = ladder.step(from_index, direction)
        current = ladder[from_index]
        logger.info("Scaling", current=current, new=target, direction=direction)

        self._phase = ScalingPhase.DRAINING
        drain = await self.drain_coordinator.drain()

        self._phase = ScalingPhase.PROVIDER_STOPPING
        logger.info("Stopping instance")
        await self.provider.stop_instance()

        self._phase = ScalingPhase.RESIZING
        logger.info("Instance stopped, resizing", target=target)
        try:
            await self.resize_coordinator.resize(target)
        except RecoveryFailed:
            self._record_recovery(False)
            raise
        except ResizeFailed:
            self._record_recovery(True)
            raise

        completed_at = self._clock()
        self._last_scaled_at = completed_at
        if self._metrics:
            self._metrics.record_scaled(to_index)

        result = ScaleResult(
            direction=direction,
            from_size=current,
            to_size=target,
            from_index=from_index,
            to_index=to_index,
            started_at=started_at,
            completed_at=completed_at,
            drain=drain,
        )
        logger.info("Instance resized", **result.to_dict())
        return result

    def _set_in_progress(self, in_progress: bool) -> None:
        if self._metrics:
            self._metrics.set_in_progress(in_progress)

    def _record_recovery(self, succeeded: bool) -> None:
        if self._metrics:
            self._metrics.record_recovery(succeeded)

    def get_state(self) -> dict[str, Any]:
        """Get orchestrator state."""
        next_allowed = self.next_allowed_at()
        return {
            "phase": self._phase.value,
            "scaling": self.is_scaling,
            "last_scaled_at": self._last_scaled_at.isoformat() if self._last_scaled_at else None,
            "next_allowed_at": next_allowed.isoformat() if next_allowed else None,
            "min_interval_seconds": self.min_interval.total_seconds(),
        }
