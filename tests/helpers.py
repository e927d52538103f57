import asyncio
import shutil
from pathlib import Path

from pushpipe.errors import CheckoutError
from pushpipe.models import (
    Build,
    BuildState,
    DeployTarget,
    JobDefinition,
    StageConfig,
    StageKind,
    TransportKind,
    TriggerEvent,
)
from pushpipe.models.trigger import utcnow
from pushpipe.services.notifier import Notifier

class FakeCheckout:
    """Copies a prepared source tree instead of cloning."""

    def __init__(self, source: Path, fail: bool = False):
        self.source = source
        self.fail = fail
        self.calls = []

    async def checkout(self, repository_url, commit_sha, dest, log_path, credential=None):
        self.calls.append((repository_url, commit_sha, credential))
        if self.fail:
            raise CheckoutError("git clone failed: exit status 128")
        shutil.copytree(self.source, dest)
        return dest

class RecordingNotifier(Notifier):
    def __init__(self):
        super().__init__()
        self.builds = []

    async def notify(self, build, job=None):
        self.builds.append(build.model_copy(deep=True))

class GatedExecutor:
    """Holds each build running until released; records running intervals."""

    def __init__(self):
        self.gates = {}
        self.started = {}
        self.intervals = []
        self.active = 0
        self.max_active = 0

    def gate(self, build_id):
        return self.gates.setdefault(build_id, asyncio.Event())

    def release(self, build_id):
        self.gate(build_id).set()

    async def wait_started(self, build_id):
        while build_id not in self.started:
            await asyncio.sleep(0.01)

    async def execute(self, build, job):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        start = asyncio.get_running_loop().time()
        self.started[build.build_id] = build.job_id
        try:
            await self.gate(build.build_id).wait()
        finally:
            self.active -= 1
        self.intervals.append((build.job_id, build.build_id, start, asyncio.get_running_loop().time()))
        build.state = BuildState.SUCCEEDED
        build.finished_at = utcnow()
        return build

def make_event(repo="site", ref="main", sha="abc123", duplicate=False):
    return TriggerEvent(repository_id=repo, ref=ref, commit_sha=sha, duplicate=duplicate)

def make_job(name="site", stages=None, targets=None, **kwargs):
    kwargs.setdefault("repository_id", name)
    return JobDefinition(
        name=name,
        repository_url=f"https://git.example.com/{name}.git",
        ref_pattern=kwargs.pop("ref_pattern", "main"),
        stages=stages or [StageConfig(name="test", commands=["true"])],
        deploy_targets=targets or [],
        **kwargs,
    )

def checkout_stage():
    return StageConfig(name="checkout", kind=StageKind.CHECKOUT)

def command_stage(name, *commands, **kwargs):
    return StageConfig(name=name, commands=list(commands), **kwargs)

def deploy_stage(*patterns):
    return StageConfig(name="deploy", kind=StageKind.DEPLOY, artifacts=list(patterns) or ["**/*"])

def local_target(directory, name="local", **kwargs):
    return DeployTarget(name=name, kind=TransportKind.LOCAL, remote_directory=str(directory), **kwargs)

def running_build(job, event=None, build_id=1):
    return Build(
        build_id=build_id,
        job_id=job.name,
        trigger=event or make_event(repo=job.repository_id),
        state=BuildState.RUNNING,
        started_at=utcnow(),
    )

