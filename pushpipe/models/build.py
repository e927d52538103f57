"""
Build execution models.
"""

from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from enum import Enum

from pushpipe.models.trigger import TriggerEvent, utcnow

class BuildState(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ERRORED = "errored"
    CANCELLED = "cancelled"

TERMINAL_STATES = frozenset({
    BuildState.SUCCEEDED,
    BuildState.FAILED,
    BuildState.ERRORED,
    BuildState.CANCELLED,
})

class StageStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"

class TransferResult(BaseModel):
    target: str
    host: str
    transferred: bool = False
    post_command_ok: Optional[bool] = None  # None when no post command is configured
    files: List[str] = []
    detail: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.transferred and self.post_command_ok is not False

class StageResult(BaseModel):
    stage_name: str
    status: StageStatus
    exit_detail: Optional[str] = None
    logs_ref: Optional[str] = None
    duration: float = 0.0
    best_effort: bool = False
    targets: List[TransferResult] = []

    class Config:
        frozen = True

class Build(BaseModel):
    build_id: int
    job_id: str
    trigger: TriggerEvent
    state: BuildState = BuildState.QUEUED
    stage_results: List[StageResult] = []
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def duration(self) -> Optional[float]:
        if self.started_at and self.finished_at:
            return (self.finished_at - self.started_at).total_seconds()
        return None

    def record(self, result: StageResult):
        """Append a stage result; results are never reordered or replaced."""
        if self.is_terminal:
            raise RuntimeError(f"Build {self.build_id} is already {self.state.value}")
        self.stage_results.append(result)

def derive_state(build: Build) -> BuildState:
    """
    Compute a build's terminal state from what it recorded.

    A precondition error wins; otherwise any failed stage that is not
    best-effort fails the build.
    """
    if build.error is not None:
        return BuildState.ERRORED
    for result in build.stage_results:
        if result.status == StageStatus.FAILED and not result.best_effort:
            return BuildState.FAILED
    return BuildState.SUCCEEDED
