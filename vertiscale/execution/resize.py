"""
Resize Coordinator.

Wraps the provider with the size ladder view and the recovery policy:
a failed resize always gets exactly one power-on attempt so the instance
is not left stopped.
"""

from collections.abc import Iterable

from vertiscale.errors import (
    ActionTimeout,
    ProviderError,
    RecoveryFailed,
    ResizeFailed,
    ResizeTimeout,
)
from vertiscale.execution.actions import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_POLL_INTERVAL_SECONDS,
    wait_for_action,
)
from vertiscale.execution.base import AsyncAction, BaseProvider
from vertiscale.sizing.ladder import SizeLadder
from vertiscale.utils.logging import get_logger

logger = get_logger(__name__)


class ResizeCoordinator:
    """Resolves the ladder for the instance and performs resizes with recovery."""

    def __init__(
        self,
        provider: BaseProvider,
        allowed_sizes: Iterable[str],
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        """
        Initialize resize coordinator.

        Args:
            provider: Cloud provider for the managed instance
            allowed_sizes: Size names the operator permits
            poll_interval_seconds: Delay between action polls
            max_attempts: Polls before a pending action times out
        """
        self.provider = provider
        self.allowed_sizes = tuple(allowed_sizes)
        self.poll_interval_seconds = poll_interval_seconds
        self.max_attempts = max_attempts

    async def get_ladder(self) -> SizeLadder:
        available = await self.provider.get_available_sizes()
        return SizeLadder.build(available, self.allowed_sizes)

    async def get_current_and_available(self) -> tuple[int, SizeLadder]:
        """
        Current ladder index and the ladder it indexes.

        Raises:
            SizeNotFound: The current size is not in the allowed ladder
        """
        current = await self.provider.get_current_size()
        ladder = await self.get_ladder()
        return ladder.index_of(current), ladder

    async def _wait(self, action: AsyncAction) -> AsyncAction:
        return await wait_for_action(
            self.provider,
            action,
            poll_interval_seconds=self.poll_interval_seconds,
            max_attempts=self.max_attempts,
        )

    async def resize(self, target: str) -> None:
        """
        Resize the stopped instance to `target`.

        On any resize failure the instance is powered on once. If that works
        the resize error is raised, otherwise RecoveryFailed with both.

        Raises:
            ResizeFailed: Resize failed (stale size, provider error, action error)
            ResizeTimeout: Resize action still pending after the last poll
            RecoveryFailed: Resize and the power-on recovery both failed
        """
        try:
            await self._resize(target)
        except ResizeFailed as e:
            logger.error("Resize failed, powering instance back on", target=target, error=str(e))
            try:
                await self._power_on()
            except ProviderError as recovery_error:
                logger.error(
                    "Power-on recovery failed",
                    target=target,
                    error=str(recovery_error),
                )
                raise RecoveryFailed(e, recovery_error) from e
            logger.info("Instance powered back on after failed resize", target=target)
            raise

        logger.info("Resize completed", target=target)

    async def _resize(self, target: str) -> None:
        try:
            ladder = await self.get_ladder()
            if target not in ladder:
                raise ResizeFailed(
                    f"size {target!r} is no longer offered",
                    details={"target": target, "ladder": list(ladder.sizes)},
                )

            logger.info("Resizing instance", target=target)
            action = await self.provider.resize(target)
            await self._wait(action)
        except ActionTimeout as e:
            raise ResizeTimeout(e.message, details=e.details) from e
        except ProviderError as e:
            raise ResizeFailed(e.message, details=e.details) from e

    async def _power_on(self) -> None:
        action = await self.provider.power_on()
        await self._wait(action)
