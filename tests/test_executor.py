"""Tests for the pipeline executor."""

import asyncio
from pathlib import Path

from pushpipe.models import (
    BuildState,
    DeployTarget,
    StageConfig,
    StageKind,
    StageStatus,
    TransferResult,
    TransportKind,
)
from pushpipe.services.transport import DeploymentTransport, LocalTransport, TransportRegistry

from helpers import (
    FakeCheckout,
    checkout_stage,
    command_stage,
    deploy_stage,
    local_target,
    make_job,
    running_build,
)

class UnreachableTransport(DeploymentTransport):
    kind = TransportKind.SSH

    def __init__(self):
        self.attempts = []

    async def deploy(self, artifacts, target, log_path):
        self.attempts.append(target.name)
        return TransferResult(target=target.name, host=target.host, detail="transfer failed: unreachable")

def assert_prefix_property(build, stage_count):
    statuses = [r.status for r in build.stage_results]
    assert len(statuses) == stage_count
    executed = [s for s in statuses if s != StageStatus.SKIPPED]
    # Executed stages come first, everything after them is skipped
    assert statuses[:len(executed)] == executed
    assert all(s == StageStatus.SKIPPED for s in statuses[len(executed):])
    non_passed = [i for i, s in enumerate(executed) if s != StageStatus.PASSED]
    if non_passed:
        assert non_passed[0] == len(executed) - 1

def run(executor, build, job):
    return asyncio.run(executor.execute(build, job))

def test_end_to_end_checkout_test_deploy(executor_factory, tmp_path):
    html = tmp_path / "var" / "www" / "html"
    job = make_job(
        stages=[checkout_stage(), command_stage("test", "test -f dist/index.html"), deploy_stage("dist/**")],
        targets=[local_target(html, path_prefix="dist")],
    )
    build = run(executor_factory(), running_build(job), job)

    assert build.state == BuildState.SUCCEEDED
    assert [r.status for r in build.stage_results] == [StageStatus.PASSED] * 3
    assert (html / "index.html").read_text() == "<h1>hello</h1>"
    assert (html / "css" / "site.css").exists()
    assert not (html / "README.md").exists()
    [target] = build.stage_results[2].targets
    assert target.transferred is True
    assert sorted(target.files) == ["css/site.css", "index.html"]
    assert build.finished_at is not None

def test_failed_test_skips_deploy(executor_factory, tmp_path):
    html = tmp_path / "html"
    job = make_job(
        stages=[checkout_stage(), command_stage("test", "exit 3"), deploy_stage("dist/**")],
        targets=[local_target(html)],
    )
    build = run(executor_factory(), running_build(job), job)

    assert build.state == BuildState.FAILED
    assert [r.status for r in build.stage_results] == [
        StageStatus.PASSED,
        StageStatus.FAILED,
        StageStatus.SKIPPED,
    ]
    assert build.stage_results[1].exit_detail == "exit status 3"
    assert not html.exists()
    assert_prefix_property(build, 3)

def test_checkout_failure_is_errored(executor_factory, source_tree):
    checkout = FakeCheckout(source_tree, fail=True)
    job = make_job(stages=[checkout_stage(), command_stage("test", "true")])
    build = run(executor_factory(checkout=checkout), running_build(job), job)

    assert build.state == BuildState.ERRORED
    assert "git clone failed" in build.error
    assert [r.status for r in build.stage_results] == [StageStatus.SKIPPED] * 2

def test_missing_repository_secret_is_errored(executor_factory, source_tree):
    checkout = FakeCheckout(source_tree)
    job = make_job(stages=[command_stage("test", "true")], credential_handle="nope")
    build = run(executor_factory(checkout=checkout), running_build(job), job)

    assert build.state == BuildState.ERRORED
    assert "nope" in build.error
    assert checkout.calls == []

def test_repository_secret_passed_to_checkout(executor_factory, source_tree):
    checkout = FakeCheckout(source_tree)
    job = make_job(stages=[command_stage("test", "true")], credential_handle="repo-token")
    build = run(executor_factory(checkout=checkout), running_build(job), job)

    assert build.state == BuildState.SUCCEEDED
    assert checkout.calls == [(job.repository_url, "abc123", "s3cret")]

def test_implicit_checkout_without_checkout_stage(executor_factory):
    job = make_job(stages=[command_stage("test", "test -f README.md")])
    build = run(executor_factory(), running_build(job), job)

    assert build.state == BuildState.SUCCEEDED
    assert [r.stage_name for r in build.stage_results] == ["test"]

def test_stage_timeout_fails_stage(executor_factory):
    job = make_job(stages=[
        command_stage("slow", "sleep 10", timeout=1),
        command_stage("after", "true"),
    ])
    build = run(executor_factory(), running_build(job), job)

    assert build.state == BuildState.FAILED
    assert build.stage_results[0].exit_detail == "timed out after 1s"
    assert build.stage_results[1].status == StageStatus.SKIPPED
    assert build.stage_results[0].duration < 10

def test_stage_environment_and_logs(executor_factory):
    job = make_job(
        stages=[command_stage(
            "env",
            'test "$PUSHPIPE_COMMIT_SHA" = abc123',
            'test "$JOB_VAR" = job',
            'test "$STAGE_VAR" = stage',
            "echo hello-from-stage",
            env={"STAGE_VAR": "stage"},
        )],
        env={"JOB_VAR": "job"},
    )
    build = run(executor_factory(), running_build(job), job)

    assert build.state == BuildState.SUCCEEDED
    log = Path(build.stage_results[0].logs_ref).read_text()
    assert "hello-from-stage" in log

def test_partial_deploy_isolation(executor_factory, secrets, tmp_path):
    reachable_dir = tmp_path / "reachable"
    unreachable = UnreachableTransport()
    registry = TransportRegistry({
        TransportKind.LOCAL: LocalTransport(),
        TransportKind.SSH: unreachable,
    })
    job = make_job(
        stages=[checkout_stage(), deploy_stage("dist/**")],
        targets=[
            DeployTarget(name="down", host="10.255.255.1", remote_directory="/srv"),
            local_target(reachable_dir, name="up"),
        ],
    )
    build = run(executor_factory(transports=registry), running_build(job), job)

    deploy = build.stage_results[1]
    assert build.state == BuildState.FAILED
    assert deploy.status == StageStatus.FAILED
    assert deploy.exit_detail == "partial deploy failure: down failed"
    results = {t.target: t for t in deploy.targets}
    assert results["up"].transferred is True
    assert results["down"].transferred is False
    assert (reachable_dir / "dist" / "index.html").exists()
    assert unreachable.attempts == ["down"]

def test_parallel_deploy_keeps_target_order(executor_factory, tmp_path):
    job = make_job(
        stages=[deploy_stage("dist/index.html")],
        targets=[local_target(tmp_path / "a", name="a"), local_target(tmp_path / "b", name="b")],
        deploy_parallel=True,
    )
    build = run(executor_factory(), running_build(job), job)

    assert build.state == BuildState.SUCCEEDED
    assert [t.target for t in build.stage_results[0].targets] == ["a", "b"]
    assert (tmp_path / "b" / "dist" / "index.html").exists()

def test_post_command_failure_tracked_separately(executor_factory, tmp_path):
    job = make_job(
        stages=[deploy_stage("dist/**")],
        targets=[local_target(tmp_path / "out", post_command="exit 7")],
    )
    build = run(executor_factory(), running_build(job), job)

    [target] = build.stage_results[0].targets
    assert target.transferred is True
    assert target.post_command_ok is False
    assert build.stage_results[0].status == StageStatus.FAILED
    assert build.state == BuildState.FAILED

def test_post_command_success(executor_factory, tmp_path):
    job = make_job(
        stages=[deploy_stage("dist/**")],
        targets=[local_target(tmp_path / "out", post_command="test -f dist/index.html && touch deployed")],
    )
    build = run(executor_factory(), running_build(job), job)

    assert build.stage_results[0].targets[0].post_command_ok is True
    assert (tmp_path / "out" / "deployed").exists()

def test_no_matching_artifacts_fails_deploy(executor_factory, tmp_path):
    job = make_job(stages=[deploy_stage("build/**")], targets=[local_target(tmp_path / "out")])
    build = run(executor_factory(), running_build(job), job)

    assert build.stage_results[0].status == StageStatus.FAILED
    assert "no artifacts matched" in build.stage_results[0].exit_detail

def test_best_effort_post_stage_does_not_fail_build(executor_factory, tmp_path):
    job = make_job(
        stages=[
            deploy_stage("dist/**"),
            StageConfig(name="post", kind=StageKind.POST, commands=["exit 1"]),
        ],
        targets=[local_target(tmp_path / "out")],
    )
    build = run(executor_factory(), running_build(job), job)

    assert build.stage_results[0].status == StageStatus.PASSED
    post = build.stage_results[1]
    assert post.status == StageStatus.FAILED
    assert post.best_effort is True
    assert build.state == BuildState.SUCCEEDED

def test_workspace_removed_after_build(executor_factory, tmp_path):
    job = make_job(stages=[command_stage("test", "true")])
    run(executor_factory(), running_build(job), job)

    assert not list(tmp_path.glob("pushpipe_1_*"))

def test_progress_callback_sees_each_stage(executor_factory):
    seen = []
    job = make_job(stages=[command_stage("one", "true"), command_stage("two", "true")])
    executor = executor_factory(on_progress=lambda b: seen.append(len(b.stage_results)))
    run(executor, running_build(job), job)

    assert seen == [1, 2]

def test_progress_callback_failure_does_not_abort_build(executor_factory):
    def broken_save(build):
        raise RuntimeError("database is locked")

    job = make_job(stages=[command_stage("one", "true"), command_stage("two", "true")])
    executor = executor_factory(on_progress=broken_save)
    build = run(executor, running_build(job), job)

    assert build.state == BuildState.SUCCEEDED
    assert [r.status for r in build.stage_results] == [StageStatus.PASSED] * 2
