"""
Base Provider for vertical instance scaling.

Responsibilities:
- Define the abstract cloud provider interface
- Model long-running cloud actions
- Provide an in-memory provider for tests and dry runs
"""

import itertools
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from vertiscale.errors import ProviderError
from vertiscale.sizing.ladder import SizeInfo
from vertiscale.utils.logging import get_logger

logger = get_logger(__name__)


class ProviderType(str, Enum):
    """Types of providers."""

    HETZNER = "hetzner"
    MOCK = "mock"


class ActionStatus(str, Enum):
    """Status of a cloud-side action."""

    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


class PowerStatus(str, Enum):
    """Instance power status, reduced to what the scaler cares about."""

    RUNNING = "running"
    OFF = "off"
    TRANSITIONING = "transitioning"


@dataclass
class AsyncAction:
    """A long-running operation on the provider side. Polled, never pushed."""

    action_id: str
    command: str
    status: ActionStatus = ActionStatus.PENDING
    error_message: str | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_done(self) -> bool:
        return self.status != ActionStatus.PENDING

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "action_id": self.action_id,
            "command": self.command,
            "status": self.status.value,
            "error_message": self.error_message,
            "started_at": self.started_at.isoformat(),
        }


@dataclass
class InstanceState:
    """Current state of the managed instance."""

    provider_type: ProviderType
    instance_id: str
    name: str
    size: str
    power: PowerStatus
    architecture: str = ""
    location: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "provider_type": self.provider_type.value,
            "instance_id": self.instance_id,
            "name": self.name,
            "size": self.size,
            "power": self.power.value,
            "architecture": self.architecture,
            "location": self.location,
            "timestamp": self.timestamp.isoformat(),
        }


class BaseProvider(ABC):
    """
    Abstract base class for cloud providers.

    All providers must implement:
    - locate(): Find the managed instance (startup)
    - get_current_size(): Size the instance currently has
    - get_available_sizes(): Sizes offered for the instance's architecture and location
    - stop_instance(): Shut down and wait until actually powered off
    - resize(): Start a size change, returning the action
    - poll_action(): Refresh an action's status
    - power_on(): Start the instance, returning the action
    """

    def __init__(self, provider_type: ProviderType) -> None:
        """
        Initialize base provider.

        Args:
            provider_type: Type of this provider
        """
        self.provider_type = provider_type

    @abstractmethod
    async def locate(self) -> InstanceState:
        """
        Find the managed instance.

        Raises:
            ConfigurationError: The instance does not exist
        """

    @abstractmethod
    async def get_current_size(self) -> str:
        """Get the instance's current size name."""

    @abstractmethod
    async def get_available_sizes(self) -> list[SizeInfo]:
        """Get the sizes the instance could be resized to."""

    @abstractmethod
    async def stop_instance(self) -> None:
        """Shut the instance down and return once it is confirmed off."""

    @abstractmethod
    async def resize(self, size: str) -> AsyncAction:
        """Start resizing the (stopped) instance to `size`."""

    @abstractmethod
    async def poll_action(self, action: AsyncAction) -> AsyncAction:
        """Fetch the current status of `action`."""

    @abstractmethod
    async def power_on(self) -> AsyncAction:
        """Start the instance."""

    async def close(self) -> None:
        """Release provider resources."""


class MockProvider(BaseProvider):
    """
    In-memory provider for testing.

    Simulates a single instance without making any API calls. Each public
    call is recorded in `calls` so tests can assert on ordering.
    """

    def __init__(
        self,
        sizes: list[SizeInfo] | None = None,
        current_size: str = "medium",
    ) -> None:
        """Initialize mock provider."""
        super().__init__(ProviderType.MOCK)
        self.sizes = sizes if sizes is not None else [
            SizeInfo("small", 0.01, "x86", "fsn1"),
            SizeInfo("medium", 0.02, "x86", "fsn1"),
            SizeInfo("large", 0.04, "x86", "fsn1"),
        ]
        self.current_size = current_size
        self.power = PowerStatus.RUNNING
        self.calls: list[str] = []

        # Failure injection
        self.pending_polls = 0
        self.resize_error: str | None = None
        self.resize_call_error: str | None = None
        self.power_on_error: str | None = None
        self.stop_error: str | None = None

        self._ids = itertools.count(1)
        self._actions: dict[str, dict[str, Any]] = {}

    def _new_action(self, command: str, on_success: Any = None, error: str | None = None) -> AsyncAction:
        action = AsyncAction(action_id=str(next(self._ids)), command=command)
        self._actions[action.action_id] = {
            "remaining": self.pending_polls,
            "on_success": on_success,
            "error": error,
        }
        return action

    async def locate(self) -> InstanceState:
        """Get mock instance state."""
        self.calls.append("locate")
        info = next((s for s in self.sizes if s.name == self.current_size), None)
        return InstanceState(
            provider_type=self.provider_type,
            instance_id="1",
            name="mock",
            size=self.current_size,
            power=self.power,
            architecture=info.architecture if info else "",
            location=info.location if info else "",
        )

    async def get_current_size(self) -> str:
        self.calls.append("get_current_size")
        return self.current_size

    async def get_available_sizes(self) -> list[SizeInfo]:
        self.calls.append("get_available_sizes")
        return list(self.sizes)

    async def stop_instance(self) -> None:
        self.calls.append("stop_instance")
        if self.stop_error:
            raise ProviderError(self.stop_error)
        self.power = PowerStatus.OFF

    async def resize(self, size: str) -> AsyncAction:
        self.calls.append(f"resize:{size}")
        if self.resize_call_error:
            raise ProviderError(self.resize_call_error)

        def apply() -> None:
            self.current_size = size

        return self._new_action("change_type", on_success=apply, error=self.resize_error)

    async def poll_action(self, action: AsyncAction) -> AsyncAction:
        self.calls.append(f"poll:{action.action_id}")
        state = self._actions[action.action_id]
        if state["remaining"] > 0:
            state["remaining"] -= 1
            return action

        if state["error"]:
            action.status = ActionStatus.ERROR
            action.error_message = state["error"]
        else:
            action.status = ActionStatus.SUCCESS
            if state["on_success"]:
                state["on_success"]()
        return action

    async def power_on(self) -> AsyncAction:
        self.calls.append("power_on")
        if self.power_on_error:
            raise ProviderError(self.power_on_error)

        def apply() -> None:
            self.power = PowerStatus.RUNNING

        action = self._new_action("start_server", on_success=apply)
        self._actions[action.action_id]["remaining"] = 0
        return action

    def calls_of(self, prefix: str) -> list[str]:
        """Recorded calls starting with `prefix`."""
        return [c for c in self.calls if c.startswith(prefix)]
