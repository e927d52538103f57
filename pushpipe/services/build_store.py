"""
Build registry: live builds in memory, history in the database.
"""

import logging
import threading
from typing import Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from pushpipe.models.build import Build, BuildState
from pushpipe.models.db import BuildRecord
from pushpipe.models.trigger import TriggerEvent

logger = logging.getLogger(__name__)

def _to_record_values(build: Build) -> dict:
    return {
        "build_id": build.build_id,
        "job_id": build.job_id,
        "repository_id": build.trigger.repository_id,
        "ref": build.trigger.ref,
        "commit_sha": build.trigger.commit_sha,
        "state": build.state.value,
        "trigger": build.trigger.model_dump(mode="json"),
        "stage_results": [r.model_dump(mode="json") for r in build.stage_results],
        "error": build.error,
        "created_at": build.created_at,
        "started_at": build.started_at,
        "finished_at": build.finished_at,
    }

def _from_record(record: BuildRecord) -> Build:
    return Build(
        build_id=record.build_id,
        job_id=record.job_id,
        trigger=TriggerEvent.model_validate(record.trigger),
        state=BuildState(record.state),
        stage_results=record.stage_results or [],
        error=record.error,
        created_at=record.created_at,
        started_at=record.started_at,
        finished_at=record.finished_at,
    )

class BuildStore:
    """
    Thread-safe registry of builds.

    Non-terminal builds are served from memory; every save is also written
    through to the `builds` table so history survives restarts.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory
        self._lock = threading.Lock()
        self._builds: Dict[int, Build] = {}

    def save(self, build: Build):
        """Record the current state of a build."""
        snapshot = build.model_copy(deep=True)

        if self._session_factory is not None:
            with self._session_factory() as session:
                session.merge(BuildRecord(**_to_record_values(snapshot)))
                session.commit()

        with self._lock:
            if snapshot.is_terminal and self._session_factory is not None:
                # Finished builds are served from the database
                self._builds.pop(build.build_id, None)
            else:
                self._builds[build.build_id] = snapshot
        logger.debug(f"Saved build {build.build_id} ({build.state.value})")

    def get(self, build_id: int) -> Optional[Build]:
        with self._lock:
            build = self._builds.get(build_id)
        if build is not None:
            return build.model_copy(deep=True)

        if self._session_factory is None:
            return None

        with self._session_factory() as session:
            record = session.get(BuildRecord, build_id)
            return _from_record(record) if record else None

    def list(
        self,
        job_id: Optional[str] = None,
        state: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> List[Build]:
        """List builds, newest first."""
        if self._session_factory is None:
            with self._lock:
                builds = sorted(self._builds.values(), key=lambda b: b.build_id, reverse=True)
            if job_id:
                builds = [b for b in builds if b.job_id == job_id]
            if state:
                builds = [b for b in builds if b.state.value == state]
            return [b.model_copy(deep=True) for b in builds[offset:offset + limit]]

        query = select(BuildRecord).order_by(BuildRecord.build_id.desc())
        if job_id:
            query = query.where(BuildRecord.job_id == job_id)
        if state:
            query = query.where(BuildRecord.state == state)
        query = query.limit(limit).offset(offset)

        with self._session_factory() as session:
            return [_from_record(r) for r in session.execute(query).scalars().all()]

    def last_build_id(self) -> int:
        """Highest build id ever recorded, or 0."""
        with self._lock:
            in_memory = max(self._builds, default=0)
        if self._session_factory is None:
            return in_memory
        with self._session_factory() as session:
            persisted = session.execute(select(func.max(BuildRecord.build_id))).scalar()
        return max(in_memory, persisted or 0)

    def stats(self) -> Dict[str, int]:
        """Count builds by state."""
        if self._session_factory is None:
            counts: Dict[str, int] = {}
            with self._lock:
                for build in self._builds.values():
                    counts[build.state.value] = counts.get(build.state.value, 0) + 1
            return counts

        query = select(BuildRecord.state, func.count(BuildRecord.build_id)).group_by(BuildRecord.state)
        with self._session_factory() as session:
            return {row[0]: row[1] for row in session.execute(query).all()}
