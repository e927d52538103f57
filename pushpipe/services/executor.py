"""
Pipeline executor - runs a build's stages in declared order.
"""

import asyncio
import logging
import re
import shutil
import tempfile
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional

from pushpipe.errors import PreconditionError, TransportError
from pushpipe.models.build import (
    Build,
    BuildState,
    StageResult,
    StageStatus,
    TransferResult,
    derive_state,
)
from pushpipe.models.job import DeployTarget, JobDefinition, StageConfig, StageKind
from pushpipe.models.trigger import utcnow
from pushpipe.services.git import GitCheckout
from pushpipe.services.runner import merged_env, run_command, shell_command
from pushpipe.services.secrets import SecretStore
from pushpipe.services.transport import ArtifactSet, TransportRegistry, collect_artifacts

logger = logging.getLogger(__name__)

def _slug(name: str) -> str:
    safe = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return safe[:40] or "stage"

class PipelineExecutor:
    """
    Runs one build to a terminal state.

    The working tree is checked out before the first stage; any failure
    there errors the build. After that, the first stage that does not pass
    halts execution and every remaining stage is recorded as skipped.
    """

    def __init__(
        self,
        secrets: SecretStore,
        checkout: GitCheckout,
        transports: TransportRegistry,
        logs_dir: Path,
        stage_timeout: int = 600,
        workspace_root: Optional[Path] = None,
        keep_workspaces: bool = False,
        on_progress: Optional[Callable[[Build], None]] = None,
    ):
        self.secrets = secrets
        self.checkout = checkout
        self.transports = transports
        self.logs_dir = Path(logs_dir)
        self.stage_timeout = stage_timeout
        self.workspace_root = workspace_root
        self.keep_workspaces = keep_workspaces
        self.on_progress = on_progress

    def _log_path(self, build: Build, index: int, name: str) -> Path:
        return self.logs_dir / _slug(build.job_id) / str(build.build_id) / f"{index:02d}-{_slug(name)}.log"

    def _progress(self, build: Build):
        if not self.on_progress:
            return
        try:
            self.on_progress(build)
        except Exception:
            logger.exception(f"Progress callback failed for build {build.build_id}")

    def _env(self, build: Build, job: JobDefinition, stage: StageConfig) -> Dict[str, str]:
        return merged_env(
            job.env,
            stage.env,
            {
                "PUSHPIPE_BUILD_ID": str(build.build_id),
                "PUSHPIPE_JOB": build.job_id,
                "PUSHPIPE_STAGE": stage.name,
                "PUSHPIPE_REF": build.trigger.ref,
                "PUSHPIPE_COMMIT_SHA": build.trigger.commit_sha,
            },
        )

    async def execute(self, build: Build, job: JobDefinition) -> Build:
        """Run every stage of `job` for `build`; returns the terminal build."""
        if build.state != BuildState.RUNNING:
            build.state = BuildState.RUNNING
            build.started_at = utcnow()

        logger.info(f"Starting build {build.build_id} of {job.name} with {len(job.stages)} stages")

        workspace = Path(tempfile.mkdtemp(
            prefix=f"pushpipe_{build.build_id}_",
            dir=str(self.workspace_root) if self.workspace_root else None,
        ))
        try:
            try:
                checkout_result = await self._prepare(build, job, workspace / "src")
            except PreconditionError as e:
                logger.error(f"Build {build.build_id} errored before stage 1: {e}")
                build.error = str(e)
                self._skip_remaining(build, job.stages)
                return self._finish(build)
            except Exception as e:
                logger.exception(f"Build {build.build_id} failed during checkout")
                build.error = f"internal error: {e}"
                self._skip_remaining(build, job.stages)
                return self._finish(build)

            try:
                await self._run_stages(build, job, workspace / "src", checkout_result)
            except Exception as e:
                logger.exception(f"Build {build.build_id} aborted by internal error")
                build.error = f"internal error: {e}"
                self._skip_remaining(build, job.stages[len(build.stage_results):])
            return self._finish(build)
        finally:
            if self.keep_workspaces:
                logger.info(f"Keeping workspace {workspace}")
            else:
                shutil.rmtree(workspace, ignore_errors=True)

    def _finish(self, build: Build) -> Build:
        build.state = derive_state(build)
        build.finished_at = utcnow()
        logger.info(f"Build {build.build_id} of {build.job_id} finished with state: {build.state.value}")
        return build

    def _skip_remaining(self, build: Build, stages: List[StageConfig]):
        for stage in stages:
            build.record(StageResult(stage_name=stage.name, status=StageStatus.SKIPPED))

    async def _prepare(self, build: Build, job: JobDefinition, repo_dir: Path) -> StageResult:
        """Resolve the repository credential and materialize the working tree."""
        checkout_index = next(
            (i for i, s in enumerate(job.stages) if s.kind == StageKind.CHECKOUT), None
        )
        checkout_name = job.stages[checkout_index].name if checkout_index is not None else "checkout"
        log_path = self._log_path(build, checkout_index or 0, checkout_name)

        credential = None
        if job.credential_handle:
            credential = self.secrets.get(job.credential_handle)

        started = time.monotonic()
        await self.checkout.checkout(
            repository_url=job.repository_url,
            commit_sha=build.trigger.commit_sha,
            dest=repo_dir,
            log_path=log_path,
            credential=credential,
        )
        return StageResult(
            stage_name=checkout_name,
            status=StageStatus.PASSED,
            exit_detail=f"checked out {build.trigger.commit_sha}",
            logs_ref=str(log_path),
            duration=time.monotonic() - started,
        )

    async def _run_stages(self, build: Build, job: JobDefinition, repo_dir: Path, checkout_result: StageResult):
        halted = False
        for index, stage in enumerate(job.stages):
            if halted:
                build.record(StageResult(stage_name=stage.name, status=StageStatus.SKIPPED))
                continue

            if stage.kind == StageKind.CHECKOUT:
                result = checkout_result
            elif stage.kind == StageKind.DEPLOY:
                result = await self._run_deploy(build, job, stage, index, repo_dir)
            else:
                result = await self._run_command_stage(build, job, stage, index, repo_dir)

            build.record(result)
            self._progress(build)

            if result.status == StageStatus.PASSED:
                logger.info(f"Stage {index} ({stage.name}) of build {build.build_id} passed")
            else:
                logger.error(f"Stage {index} ({stage.name}) of build {build.build_id} failed: {result.exit_detail}")
                halted = True

    async def _run_command_stage(
        self, build: Build, job: JobDefinition, stage: StageConfig, index: int, repo_dir: Path
    ) -> StageResult:
        timeout = stage.timeout or self.stage_timeout
        log_path = self._log_path(build, index, stage.name)
        outcome = await run_command(
            shell_command(stage.commands),
            log_path=log_path,
            cwd=repo_dir,
            env=self._env(build, job, stage),
            timeout=timeout,
        )
        return StageResult(
            stage_name=stage.name,
            status=StageStatus.PASSED if outcome.ok else StageStatus.FAILED,
            exit_detail=outcome.describe(timeout),
            logs_ref=str(log_path),
            duration=outcome.duration,
            best_effort=stage.kind == StageKind.POST,
        )

    async def _deploy_target(self, artifacts: ArtifactSet, target: DeployTarget, log_path: Path) -> TransferResult:
        try:
            transport = self.transports.for_target(target)
            return await transport.deploy(artifacts, target, log_path)
        except TransportError as e:
            return TransferResult(target=target.name, host=target.host, detail=str(e))
        except Exception as e:
            # One broken target must not abort the others
            logger.exception(f"Unexpected error deploying to {target.name}")
            return TransferResult(target=target.name, host=target.host, detail=f"unexpected error: {e}")

    async def _run_deploy(
        self, build: Build, job: JobDefinition, stage: StageConfig, index: int, repo_dir: Path
    ) -> StageResult:
        log_path = self._log_path(build, index, stage.name)
        started = time.monotonic()

        artifacts = await asyncio.to_thread(collect_artifacts, repo_dir, stage.artifacts)
        if not artifacts.files:
            return StageResult(
                stage_name=stage.name,
                status=StageStatus.FAILED,
                exit_detail=f"no artifacts matched {stage.artifacts}",
                duration=time.monotonic() - started,
            )

        logger.info(f"Deploying {len(artifacts.files)} files to {len(job.deploy_targets)} targets")
        if job.deploy_parallel:
            results = list(await asyncio.gather(
                *(self._deploy_target(artifacts, t, log_path) for t in job.deploy_targets)
            ))
        else:
            results = []
            for target in job.deploy_targets:
                results.append(await self._deploy_target(artifacts, target, log_path))

        failed = [r.target for r in results if not r.ok]
        if not failed:
            status, detail = StageStatus.PASSED, f"deployed {len(artifacts.files)} files to {len(results)} targets"
        elif len(failed) < len(results):
            status, detail = StageStatus.FAILED, f"partial deploy failure: {', '.join(failed)} failed"
        else:
            status, detail = StageStatus.FAILED, f"deploy failed on all targets: {', '.join(failed)}"

        return StageResult(
            stage_name=stage.name,
            status=status,
            exit_detail=detail,
            logs_ref=str(log_path),
            duration=time.monotonic() - started,
            targets=results,
        )
