"""
Exception hierarchy for the autoscaler.

Two families matter to callers:
- ScaleSkipped: an expected condition (nothing to do, busy, cooling down).
  Logged at info level; the cycle ends normally.
- ScalingError: the current attempt failed. Logged at error level; the next
  cycle proceeds as usual.

ConfigurationError is only raised at startup and is fatal to the process.
"""

from datetime import UTC, datetime
from typing import Any


class AutoscalerError(Exception):
    """Base exception for all autoscaler errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__.upper()
        self.details = details or {}
        self.timestamp = datetime.now(UTC)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary format."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        return f"{self.error_code}: {self.message}"


class ConfigurationError(AutoscalerError):
    """Settings or rules file are invalid, or the instance cannot be located."""


# =============================================================================
# Informational
# =============================================================================


class ScaleSkipped(AutoscalerError):
    """A scaling attempt was not started. Not a failure."""


class CannotScale(ScaleSkipped):
    """There is no eligible size in the requested direction."""

    def __init__(self, current: str, direction: int, ladder: tuple[str, ...]) -> None:
        super().__init__(
            f"no eligible size from {current} in direction {direction:+d}",
            error_code="CANNOT_SCALE",
            details={"current": current, "direction": direction, "ladder": list(ladder)},
        )
        self.current = current
        self.direction = direction


class ScalingInProgress(ScaleSkipped):
    """Another scaling attempt holds the lock."""

    def __init__(self) -> None:
        super().__init__("scaling already in progress", error_code="SCALING_IN_PROGRESS")


class TooSoon(ScaleSkipped):
    """The minimum interval since the last scale has not elapsed."""

    def __init__(self, last_scaled_at: datetime, next_allowed_at: datetime) -> None:
        super().__init__(
            f"last scale at {last_scaled_at.isoformat()}, "
            f"next allowed at {next_allowed_at.isoformat()}",
            error_code="TOO_SOON",
            details={
                "last_scaled_at": last_scaled_at.isoformat(),
                "next_allowed_at": next_allowed_at.isoformat(),
            },
        )
        self.last_scaled_at = last_scaled_at
        self.next_allowed_at = next_allowed_at


# =============================================================================
# Hard failures
# =============================================================================


class ScalingError(AutoscalerError):
    """The current scaling attempt or evaluation failed."""


class QueryFailed(ScalingError):
    """A metrics query could not be executed."""


class UnexpectedResultShape(ScalingError):
    """A metrics query returned something other than an instant vector."""

    def __init__(self, query: str, result_type: str) -> None:
        super().__init__(
            f"expected vector result for {query!r}, got {result_type!r}",
            error_code="UNEXPECTED_RESULT_SHAPE",
            details={"query": query, "result_type": result_type},
        )
        self.result_type = result_type


class SizeNotFound(ScalingError):
    """A size is not part of the allowed ladder (or no longer offered)."""

    def __init__(self, size: str, ladder: tuple[str, ...]) -> None:
        super().__init__(
            f"size {size!r} not found in {list(ladder)}",
            error_code="SIZE_NOT_FOUND",
            details={"size": size, "ladder": list(ladder)},
        )
        self.size = size


class DrainError(ScalingError):
    """The graceful drain of the game server failed."""


class RconError(DrainError):
    """The remote console connection or a command on it failed."""


class DrainTimeout(DrainError):
    """Players were still online when the drain timeout elapsed."""


class ProtocolMismatch(DrainError):
    """An occupancy reply did not have the expected shape."""

    def __init__(self, response: str) -> None:
        super().__init__(
            f"occupancy response does not match expected format: {response!r}",
            error_code="PROTOCOL_MISMATCH",
            details={"response": response},
        )
        self.response = response


class ProviderError(ScalingError):
    """A cloud provider API call failed."""


class ActionFailed(ProviderError):
    """A long-running cloud action finished with an error status."""


class ActionTimeout(ActionFailed):
    """A long-running cloud action was still pending after the last poll."""


class ResizeFailed(ScalingError):
    """The cloud resize action failed."""


class ResizeTimeout(ResizeFailed):
    """The cloud resize action did not finish within the allowed number of polls."""


class RecoveryFailed(ScalingError):
    """
    Powering the instance back on after a failed resize also failed.

    The instance may be down. Both errors are kept.
    """

    def __init__(self, resize_error: BaseException, recovery_error: BaseException) -> None:
        super().__init__(
            f"resize failed ({resize_error}) and power-on recovery failed ({recovery_error})",
            error_code="RECOVERY_FAILED",
            details={
                "resize_error": str(resize_error),
                "recovery_error": str(recovery_error),
            },
        )
        self.resize_error = resize_error
        self.recovery_error = recovery_error
