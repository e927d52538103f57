"""
Job scheduler - resolves triggers to jobs and serializes builds per job.
"""

import asyncio
import itertools
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional, Sequence, Set

from pushpipe.models.build import Build, BuildState
from pushpipe.models.job import ConcurrencyPolicy, JobDefinition
from pushpipe.models.trigger import TriggerEvent, utcnow
from pushpipe.services.build_store import BuildStore
from pushpipe.services.executor import PipelineExecutor
from pushpipe.services.notifier import Notifier

logger = logging.getLogger(__name__)

@dataclass
class JobLane:
    """Serialization queue for one job; at most one build runs from it."""

    job: JobDefinition
    pending: Deque[Build] = field(default_factory=deque)
    running: Optional[Build] = None
    task: Optional[asyncio.Task] = None

    @property
    def busy(self) -> bool:
        return self.task is not None and not self.task.done()

class Scheduler:
    """
    Admits trigger events as builds.

    `serial` jobs queue new builds behind the running one. `latest-wins`
    jobs cancel every queued build when a newer trigger arrives. A build
    that has started running is never preempted.
    """

    def __init__(
        self,
        jobs: Sequence[JobDefinition],
        executor: PipelineExecutor,
        store: BuildStore,
        notifier: Notifier,
        max_concurrent_builds: int = 4,
        queue: Optional[asyncio.Queue] = None,
    ):
        self.jobs: List[JobDefinition] = list(jobs)
        self.executor = executor
        self.store = store
        self.notifier = notifier
        self.queue = queue if queue is not None else asyncio.Queue()
        self._slots = asyncio.Semaphore(max(1, max_concurrent_builds))
        self._lock = threading.Lock()
        self._lanes: Dict[str, JobLane] = {}
        self._ids = itertools.count(store.last_build_id() + 1)
        self._notifications: Set[asyncio.Task] = set()

    def resolve(self, event: TriggerEvent) -> Optional[JobDefinition]:
        """First job whose repository and ref pattern match wins."""
        for job in self.jobs:
            if job.matches(event):
                return job
        return None

    def reload(self, jobs: Sequence[JobDefinition]):
        """Swap job definitions for future triggers; in-flight builds keep theirs."""
        with self._lock:
            self.jobs = list(jobs)
        logger.info(f"Reloaded {len(self.jobs)} job definitions")

    def _is_known(self, lane: JobLane, event: TriggerEvent) -> bool:
        builds = list(lane.pending)
        if lane.running:
            builds.append(lane.running)
        return any(b.trigger.key == event.key for b in builds)

    def submit(self, event: TriggerEvent) -> Optional[Build]:
        """
        Admit an event without blocking. Returns the queued build, or None
        when the event is dropped (no matching job) or coalesced.
        """
        with self._lock:
            job = self.resolve(event)
            if job is None:
                logger.info(f"No job matches {event.repository_id} {event.ref}; dropping trigger")
                return None

            lane = self._lanes.get(job.name)
            if lane is None:
                lane = self._lanes[job.name] = JobLane(job=job)
            lane.job = job

            if event.duplicate or self._is_known(lane, event):
                logger.info(
                    f"Coalescing duplicate trigger for {job.name} "
                    f"({event.ref}@{event.commit_sha[:12]})"
                )
                return None

            superseded: List[Build] = []
            if job.concurrency_policy == ConcurrencyPolicy.LATEST_WINS:
                while lane.pending:
                    superseded.append(lane.pending.popleft())

            build = Build(build_id=next(self._ids), job_id=job.name, trigger=event)
            lane.pending.append(build)
            self._save(build)

            for old in superseded:
                old.state = BuildState.CANCELLED
                old.finished_at = utcnow()
                old.error = f"superseded by build {build.build_id}"
                self._save(old)
                logger.info(f"Build {old.build_id} of {job.name} superseded by {build.build_id}")

            logger.info(f"Build {build.build_id} of {job.name} queued ({event.ref}@{event.commit_sha[:12]})")

            if not lane.busy:
                lane.task = asyncio.get_running_loop().create_task(self._drain(lane))

        for old in superseded:
            self._spawn_notify(old, job)
        return build

    def _save(self, build: Build):
        try:
            self.store.save(build)
        except Exception:
            logger.exception(f"Failed to persist build {build.build_id} ({build.state.value})")

    async def _notify(self, build: Build, job: JobDefinition):
        try:
            await self.notifier.notify(build, job)
        except Exception:
            logger.exception(f"Notifier failed for build {build.build_id}")

    def _spawn_notify(self, build: Build, job: JobDefinition):
        task = asyncio.get_running_loop().create_task(self._notify(build, job))
        self._notifications.add(task)
        task.add_done_callback(self._notifications.discard)

    def _next_pending(self, lane: JobLane) -> Optional[Build]:
        with self._lock:
            if not lane.pending:
                return None
            build = lane.pending.popleft()
            build.state = BuildState.RUNNING
            build.started_at = utcnow()
            lane.running = build
            return build

    async def _drain(self, lane: JobLane):
        """Run a lane's pending builds one at a time."""
        while True:
            async with self._slots:
                build = self._next_pending(lane)
                if build is None:
                    return
                job = lane.job
                self._save(build)
                try:
                    await self.executor.execute(build, job)
                except Exception as e:
                    logger.exception(f"Build {build.build_id} crashed")
                    if not build.is_terminal:
                        build.error = f"internal error: {e}"
                        build.state = BuildState.ERRORED
                        build.finished_at = utcnow()
                finally:
                    with self._lock:
                        lane.running = None
                    self._save(build)
            await self._notify(build, job)

    async def serve(self):
        """Consume the trigger queue until cancelled."""
        logger.info("Scheduler started, waiting for triggers...")
        while True:
            event = await self.queue.get()
            try:
                self.submit(event)
            except Exception:
                logger.exception(f"Failed to admit trigger {event.key}")
            finally:
                self.queue.task_done()

    async def join(self):
        """Wait until the queue is drained and every lane is idle."""
        while True:
            await self.queue.join()
            with self._lock:
                tasks = [lane.task for lane in self._lanes.values() if lane.busy]
            if not tasks and self.queue.empty():
                break
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._notifications:
            await asyncio.gather(*self._notifications, return_exceptions=True)

    def status(self) -> Dict[str, Dict[str, object]]:
        with self._lock:
            return {
                name: {
                    "running": lane.running.build_id if lane.running else None,
                    "queued": [b.build_id for b in lane.pending],
                }
                for name, lane in self._lanes.items()
            }
