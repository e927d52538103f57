"""
Static job configuration models.
"""

import fnmatch
from pydantic import BaseModel
from typing import List, Optional, Dict
from enum import Enum

from pushpipe.models.trigger import TriggerEvent

class ConcurrencyPolicy(str, Enum):
    SERIAL = "serial"
    LATEST_WINS = "latest-wins"

class StageKind(str, Enum):
    CHECKOUT = "checkout"
    COMMAND = "command"
    DEPLOY = "deploy"
    POST = "post"

class TransportKind(str, Enum):
    SSH = "ssh"
    LOCAL = "local"

class StageConfig(BaseModel):
    name: str
    kind: StageKind = StageKind.COMMAND
    commands: List[str] = []
    artifacts: List[str] = []
    env: Dict[str, str] = {}
    timeout: Optional[int] = None

    class Config:
        frozen = True

class DeployTarget(BaseModel):
    name: str
    host: str = "localhost"
    remote_directory: str
    kind: TransportKind = TransportKind.SSH
    user: Optional[str] = None
    port: Optional[int] = None
    credential_handle: Optional[str] = None
    post_command: Optional[str] = None
    path_prefix: Optional[str] = None

    class Config:
        frozen = True

    @property
    def destination(self) -> str:
        return f"{self.user}@{self.host}" if self.user else self.host

class NotifySink(BaseModel):
    type: str
    url: Optional[str] = None

    class Config:
        frozen = True

def normalize_repository_url(url: Optional[str]) -> Optional[str]:
    """Strip trailing slashes and a `.git` suffix so URLs compare equal."""
    if not url:
        return None
    url = url.strip().rstrip("/")
    if url.endswith(".git"):
        url = url[:-4]
    return url.lower()

class JobDefinition(BaseModel):
    name: str
    repository_url: str
    repository_id: Optional[str] = None
    ref_pattern: str = "*"
    stages: List[StageConfig]
    deploy_targets: List[DeployTarget] = []
    concurrency_policy: ConcurrencyPolicy = ConcurrencyPolicy.SERIAL
    deploy_parallel: bool = False
    credential_handle: Optional[str] = None
    env: Dict[str, str] = {}
    notify: List[NotifySink] = []

    class Config:
        frozen = True

    def matches(self, event: TriggerEvent) -> bool:
        """True if the event's repository and ref belong to this job."""
        same_repo = False
        if self.repository_id and event.repository_id == self.repository_id:
            same_repo = True
        elif event.repository_url and (
            normalize_repository_url(event.repository_url)
            == normalize_repository_url(self.repository_url)
        ):
            same_repo = True
        elif not self.repository_id and event.repository_id == self.repository_url:
            same_repo = True

        if not same_repo:
            return False
        return fnmatch.fnmatchcase(event.ref, self.ref_pattern)
