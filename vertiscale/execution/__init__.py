"""Cloud provider execution layer."""

from vertiscale.execution.actions import wait_for_action
from vertiscale.execution.base import (
    ActionStatus,
    AsyncAction,
    BaseProvider,
    InstanceState,
    MockProvider,
    PowerStatus,
    ProviderType,
)
from vertiscale.execution.hetzner import HetznerConfig, HetznerProvider, SizeCache
from vertiscale.execution.resize import ResizeCoordinator

__all__ = [
    "ActionStatus",
    "AsyncAction",
    "BaseProvider",
    "HetznerConfig",
    "HetznerProvider",
    "InstanceState",
    "MockProvider",
    "PowerStatus",
    "ProviderType",
    "ResizeCoordinator",
    "SizeCache",
    "wait_for_action",
]
