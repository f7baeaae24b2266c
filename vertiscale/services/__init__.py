"""Autoscaler services."""

from vertiscale.services.autoscaler import (
    AttemptOutcome,
    AutoscalerService,
    ScaleAttempt,
    TriggerType,
    get_autoscaler_service,
    init_autoscaler_service,
)
from vertiscale.services.orchestrator import ScaleResult, ScalingOrchestrator, ScalingPhase
from vertiscale.services.scheduler import (
    ScheduledTask,
    SchedulerService,
    TaskStatus,
    TriggerKind,
    create_autoscaler_scheduler,
)

__all__ = [
    "AttemptOutcome",
    "AutoscalerService",
    "ScaleAttempt",
    "ScaleResult",
    "ScalingOrchestrator",
    "ScalingPhase",
    "ScheduledTask",
    "SchedulerService",
    "TaskStatus",
    "TriggerKind",
    "TriggerType",
    "create_autoscaler_scheduler",
    "get_autoscaler_service",
    "init_autoscaler_service",
]
