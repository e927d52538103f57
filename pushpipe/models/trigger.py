"""
Normalized push notification.
"""

from pydantic import BaseModel, Field
from typing import Optional, Tuple
from datetime import datetime, timezone

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

class TriggerEvent(BaseModel):
    repository_id: str
    ref: str
    commit_sha: str
    repository_url: Optional[str] = None
    pusher: Optional[str] = None
    received_at: datetime = Field(default_factory=utcnow)
    duplicate: bool = False

    class Config:
        frozen = True

    @property
    def key(self) -> Tuple[str, str, str]:
        """Deduplication key for redelivered notifications."""
        return (self.repository_id, self.ref, self.commit_sha)
