"""
Drain Coordinator for graceful game server shutdown.

Sequence per invocation, strictly in order:
1. Notify: broadcast the pre-drain message to connected players
2. WaitForEmpty: poll occupancy until nobody is online or the timeout elapses
3. Stop: issue the stop command and wait for the acknowledgement

Any failure aborts the scale attempt before the instance is touched.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol

from vertiscale.drain.occupancy import ListCommandParser, OccupancyParser
from vertiscale.drain.rcon import RconClient
from vertiscale.errors import DrainTimeout, RconError
from vertiscale.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 5.0
DEFAULT_TIMEOUT_SECONDS = 300.0


class DrainStage(str, Enum):
    """Stages of a drain."""

    CONNECTING = "connecting"
    NOTIFYING = "notifying"
    WAITING = "waiting"
    STOPPING = "stopping"
    COMPLETED = "completed"


class CommandSession(Protocol):
    """The subset of RconClient the coordinator needs."""

    async def connect(self) -> None: ...

    async def command(self, command: str) -> str: ...

    async def close(self) -> None: ...


def broadcast_command(message: str) -> str:
    """
    Build the console command that shows `message` to every player.

    A message starting with "{" is a JSON text component and is sent with
    tellraw; anything else is sent as plain chat with say.
    """
    if message.startswith("{"):
        return f"tellraw @a {message}"
    return f"say {message}"


@dataclass
class DrainResult:
    """Result of a completed drain."""

    started_at: datetime
    completed_at: datetime
    polls: int
    occupancy_history: list[int] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "duration_seconds": self.duration_seconds,
            "polls": self.polls,
            "occupancy_history": self.occupancy_history,
        }


class DrainCoordinator:
    """
    Drives the notify → wait-for-empty → stop sequence over RCON.

    A fresh session is opened per drain and always closed afterwards.
    """

    def __init__(
        self,
        session_factory: Callable[[], CommandSession],
        message: str,
        parser: OccupancyParser | None = None,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        """
        Initialize drain coordinator.

        Args:
            session_factory: Creates an unconnected command session
            message: Pre-drain broadcast (plain text or JSON text component)
            parser: Occupancy parser (defaults to the `list` reply parser)
            poll_interval_seconds: Delay between occupancy polls
            timeout_seconds: Maximum time to wait for the server to empty
        """
        self._session_factory = session_factory
        self.message = message
        self.parser = parser or ListCommandParser()
        self.poll_interval_seconds = poll_interval_seconds
        self.timeout_seconds = timeout_seconds
        self.stage: DrainStage | None = None

    @classmethod
    def for_rcon(
        cls,
        address: str,
        password: str,
        message: str,
        command_timeout: float = 10.0,
        **kwargs: Any,
    ) -> "DrainCoordinator":
        """Create a coordinator that talks to the server at `address` over RCON."""
        return cls(
            session_factory=lambda: RconClient.from_address(address, password, command_timeout),
            message=message,
            **kwargs,
        )

    async def drain(self) -> DrainResult:
        """
        Run the full drain sequence.

        Raises:
            RconError: Connection or command failure at any stage
            DrainTimeout: Players still online after the timeout
            ProtocolMismatch: Unparseable occupancy reply
        """
        started_at = datetime.now(UTC)
        session = self._session_factory()

        try:
            self.stage = DrainStage.CONNECTING
            await session.connect()

            self.stage = DrainStage.NOTIFYING
            await self._notify(session)

            self.stage = DrainStage.WAITING
            history = await self._wait_for_empty(session)

            self.stage = DrainStage.STOPPING
            await self._stop(session)
        finally:
            await session.close()

        self.stage = DrainStage.COMPLETED
        result = DrainResult(
            started_at=started_at,
            completed_at=datetime.now(UTC),
            polls=len(history),
            occupancy_history=history,
        )
        logger.info("Drain completed", **result.to_dict())
        return result

    async def _notify(self, session: CommandSession) -> None:
        command = broadcast_command(self.message)
        logger.debug("Sending pre-drain message", message=self.message)
        try:
            await session.command(command)
        except RconError as e:
            raise RconError(f"failed to send pre-drain message: {e.message}") from e

    async def _wait_for_empty(self, session: CommandSession) -> list[int]:
        """Poll occupancy until zero. Returns the observed counts."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout_seconds
        history: list[int] = []

        while True:
            response = await session.command(self.parser.command)
            online = self.parser.parse(response)
            history.append(online)
            logger.info("Players online", online=online)

            if online == 0:
                return history

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise DrainTimeout(
                    f"server not empty after {self.timeout_seconds:g}s",
                    details={"online": online, "polls": len(history)},
                )
            await asyncio.sleep(min(self.poll_interval_seconds, remaining))

    async def _stop(self, session: CommandSession) -> None:
        logger.info("Stopping game server")
        try:
            await session.command("stop")
        except RconError as e:
            raise RconError(f"failed to stop server: {e.message}") from e
