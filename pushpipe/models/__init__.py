from pushpipe.models.trigger import TriggerEvent
from pushpipe.models.job import (
    ConcurrencyPolicy,
    StageKind,
    TransportKind,
    StageConfig,
    DeployTarget,
    NotifySink,
    JobDefinition,
)
from pushpipe.models.build import (
    BuildState,
    StageStatus,
    TransferResult,
    StageResult,
    Build,
    derive_state,
    TERMINAL_STATES,
)

__all__ = [
    "TriggerEvent",
    "ConcurrencyPolicy",
    "StageKind",
    "TransportKind",
    "StageConfig",
    "DeployTarget",
    "NotifySink",
    "JobDefinition",
    "BuildState",
    "StageStatus",
    "TransferResult",
    "StageResult",
    "Build",
    "derive_state",
    "TERMINAL_STATES",
]
