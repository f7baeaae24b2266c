"""
Polling of long-running cloud actions.
"""

import asyncio
from typing import Protocol

from vertiscale.errors import ActionFailed, ActionTimeout
from vertiscale.execution.base import ActionStatus, AsyncAction
from vertiscale.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 5.0
DEFAULT_MAX_ATTEMPTS = 24


class ActionPoller(Protocol):
    async def poll_action(self, action: AsyncAction) -> AsyncAction: ...


async def wait_for_action(
    provider: ActionPoller,
    action: AsyncAction,
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> AsyncAction:
    """
    Poll `action` until it finishes.

    At most `max_attempts` polls are made, `poll_interval_seconds` apart. An
    action that is already finished is returned without polling.

    Raises:
        ActionFailed: The action finished with an error
        ActionTimeout: Still pending after the last poll
    """
    if action.is_done:
        return _finished(action)

    for attempt in range(1, max_attempts + 1):
        action = await provider.poll_action(action)
        logger.debug(
            "Action status",
            action_id=action.action_id,
            command=action.command,
            status=action.status.value,
            attempt=attempt,
        )

        if action.is_done:
            return _finished(action)
        if attempt < max_attempts:
            await asyncio.sleep(poll_interval_seconds)

    raise ActionTimeout(
        f"action {action.action_id} ({action.command}) did not complete "
        f"after {max_attempts} polls",
        details={"action": action.to_dict(), "attempts": max_attempts},
    )


def _finished(action: AsyncAction) -> AsyncAction:
    if action.status == ActionStatus.SUCCESS:
        return action
    raise ActionFailed(
        f"action {action.action_id} ({action.command}) failed: "
        f"{action.error_message or 'unknown error'}",
        details={"action": action.to_dict()},
    )
