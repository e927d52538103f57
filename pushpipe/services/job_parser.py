"""
Job definition YAML parser and validator.
"""

import logging
from pathlib import Path, PurePosixPath
from typing import List, Dict, Any, Optional

import yaml
from pydantic import ValidationError

from pushpipe.errors import JobConfigError
from pushpipe.models.job import (
    ConcurrencyPolicy,
    DeployTarget,
    JobDefinition,
    NotifySink,
    StageConfig,
    StageKind,
    TransportKind,
)

logger = logging.getLogger(__name__)

SINK_TYPES = ("webhook", "slack", "log")

def parse_jobs_config(yaml_content: str) -> List[JobDefinition]:
    """Parse a YAML document holding one job or a `jobs:` list."""
    try:
        config = yaml.safe_load(yaml_content)
    except yaml.YAMLError as e:
        raise JobConfigError(f"Invalid YAML: {e}")

    if not config:
        raise JobConfigError("Empty job configuration")

    try:
        if isinstance(config, dict) and "jobs" in config:
            jobs = config["jobs"]
            if not isinstance(jobs, list):
                raise JobConfigError("'jobs' must be a list")
            return validate_jobs(jobs)

        return [parse_job_dict(config)]
    except ValidationError as e:
        raise JobConfigError(f"Invalid job definition: {e}")

def parse_job_dict(config: Dict[str, Any]) -> JobDefinition:
    """Validate a single job definition from dict."""
    return validate_job(config)

def load_jobs(path: Path) -> List[JobDefinition]:
    """Load jobs from a YAML file or from every *.yml / *.yaml in a directory."""
    path = Path(path)
    if path.is_dir():
        files = sorted(p for p in path.iterdir() if p.suffix in (".yml", ".yaml"))
    elif path.exists():
        files = [path]
    else:
        raise JobConfigError(f"Job configuration not found: {path}")

    jobs: List[JobDefinition] = []
    for file in files:
        try:
            jobs.extend(parse_jobs_config(file.read_text(encoding="utf-8")))
        except JobConfigError as e:
            raise JobConfigError(f"{file}: {e}")

    _check_unique_names(jobs)
    logger.info(f"Loaded {len(jobs)} jobs from {path}")
    return jobs

def validate_jobs(jobs: List[Any]) -> List[JobDefinition]:
    validated = [validate_job(job, i) for i, job in enumerate(jobs)]
    _check_unique_names(validated)
    return validated

def _check_unique_names(jobs: List[JobDefinition]):
    seen = set()
    for job in jobs:
        if job.name in seen:
            raise JobConfigError(f"Duplicate job name '{job.name}'")
        seen.add(job.name)

def _require_str(value: Any, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise JobConfigError(f"{label} must be a non-empty string")
    return value

def _optional_str(value: Any, label: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise JobConfigError(f"{label} must be a string")
    return value

def _str_list(value: Any, label: str) -> List[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        raise JobConfigError(f"{label} must be a list")
    for j, item in enumerate(value):
        if not isinstance(item, str):
            raise JobConfigError(f"{label} item {j} must be a string")
    return value

def _str_dict(value: Any, label: str) -> Dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise JobConfigError(f"{label} must be a mapping")
    return {str(k): str(v) for k, v in value.items()}

def validate_job(config: Optional[Dict[str, Any]], index: int = 0) -> JobDefinition:
    """Validate job configuration structure."""
    if not config:
        raise JobConfigError(f"Job {index} is empty")

    if not isinstance(config, dict):
        raise JobConfigError(f"Job {index} must be a dictionary")

    if "name" not in config:
        raise JobConfigError(f"Job {index} missing 'name'")
    name = _require_str(config["name"], f"Job {index} 'name'")

    if "repository_url" not in config:
        raise JobConfigError(f"Job '{name}' missing 'repository_url'")
    repository_url = _require_str(config["repository_url"], f"Job '{name}' 'repository_url'")

    policy = config.get("concurrency_policy", ConcurrencyPolicy.SERIAL.value)
    try:
        policy = ConcurrencyPolicy(policy)
    except ValueError:
        raise JobConfigError(
            f"Job '{name}' has unknown concurrency_policy '{policy}' "
            f"(expected one of {[p.value for p in ConcurrencyPolicy]})"
        )

    if "stages" not in config:
        raise JobConfigError(f"Job '{name}' must have 'stages' defined")
    stages = config["stages"]
    if not isinstance(stages, list):
        raise JobConfigError(f"Job '{name}' 'stages' must be a list")
    if len(stages) == 0:
        raise JobConfigError(f"Job '{name}' must have at least one stage")

    validated_stages = [validate_stage(stage, i) for i, stage in enumerate(stages)]

    stage_names = [s.name for s in validated_stages]
    if len(set(stage_names)) != len(stage_names):
        raise JobConfigError(f"Job '{name}' has duplicate stage names")

    for i, stage in enumerate(validated_stages):
        if stage.kind == StageKind.CHECKOUT and i != 0:
            raise JobConfigError(f"Job '{name}' checkout stage must be the first stage")

    targets = config.get("deploy_targets", [])
    if not isinstance(targets, list):
        raise JobConfigError(f"Job '{name}' 'deploy_targets' must be a list")
    validated_targets = [validate_target(t, i) for i, t in enumerate(targets)]
    target_names = [t.name for t in validated_targets]
    if len(set(target_names)) != len(target_names):
        raise JobConfigError(f"Job '{name}' has duplicate deploy target names")

    has_deploy = any(s.kind == StageKind.DEPLOY for s in validated_stages)
    if has_deploy and not validated_targets:
        raise JobConfigError(f"Job '{name}' has a deploy stage but no deploy_targets")

    notify = config.get("notify", [])
    if not isinstance(notify, list):
        raise JobConfigError(f"Job '{name}' 'notify' must be a list")

    return JobDefinition(
        name=name,
        repository_url=repository_url,
        repository_id=_optional_str(config.get("repository_id"), f"Job '{name}' 'repository_id'"),
        ref_pattern=str(config.get("ref_pattern", "*")),
        stages=validated_stages,
        deploy_targets=validated_targets,
        concurrency_policy=policy,
        deploy_parallel=bool(config.get("deploy_parallel", False)),
        credential_handle=_optional_str(config.get("credential_handle"), f"Job '{name}' 'credential_handle'"),
        env=_str_dict(config.get("env"), f"Job '{name}' 'env'"),
        notify=[validate_sink(s, i) for i, s in enumerate(notify)],
    )

def _infer_kind(step: Dict[str, Any]) -> StageKind:
    if "kind" in step:
        try:
            return StageKind(step["kind"])
        except ValueError:
            raise JobConfigError(f"Unknown stage kind '{step['kind']}'")
    lowered = str(step.get("name", "")).lower()
    if lowered in (StageKind.CHECKOUT.value, StageKind.DEPLOY.value, StageKind.POST.value):
        return StageKind(lowered)
    if "artifacts" in step or "artifact_selector" in step:
        return StageKind.DEPLOY
    return StageKind.COMMAND

def validate_stage(step: Dict[str, Any], index: int) -> StageConfig:
    """Validate a single stage."""
    if not isinstance(step, dict):
        raise JobConfigError(f"Stage {index} must be a dictionary")

    if "name" not in step:
        raise JobConfigError(f"Stage {index} missing 'name'")
    name = _require_str(step["name"], f"Stage {index} 'name'")

    kind = _infer_kind(step)
    commands: List[str] = []
    artifacts: List[str] = []

    if kind in (StageKind.COMMAND, StageKind.POST):
        raw = step.get("commands", step.get("command"))
        if raw is None:
            raise JobConfigError(f"Stage {index} missing 'commands'")
        commands = _str_list(raw, f"Stage {index} 'commands'")
        if not commands:
            raise JobConfigError(f"Stage {index} must have at least one command")
    elif kind == StageKind.DEPLOY:
        raw = step.get("artifacts", step.get("artifact_selector"))
        if raw is None:
            raise JobConfigError(f"Stage {index} missing 'artifacts'")
        artifacts = _str_list(raw, f"Stage {index} 'artifacts'")
        if not artifacts:
            raise JobConfigError(f"Stage {index} must select at least one artifact")
        for pattern in artifacts:
            if pattern.startswith("/") or ".." in PurePosixPath(pattern).parts:
                raise JobConfigError(f"Stage {index} artifact pattern '{pattern}' must be relative")

    timeout = step.get("timeout")
    if timeout is not None and (not isinstance(timeout, int) or timeout <= 0):
        raise JobConfigError(f"Stage {index} 'timeout' must be a positive integer")

    return StageConfig(
        name=name,
        kind=kind,
        commands=commands,
        artifacts=artifacts,
        env=_str_dict(step.get("env"), f"Stage {index} 'env'"),
        timeout=timeout,
    )

def validate_target(target: Dict[str, Any], index: int) -> DeployTarget:
    """Validate a deploy target."""
    if not isinstance(target, dict):
        raise JobConfigError(f"Deploy target {index} must be a dictionary")

    kind = target.get("kind", TransportKind.SSH.value)
    try:
        kind = TransportKind(kind)
    except ValueError:
        raise JobConfigError(f"Deploy target {index} has unknown kind '{kind}'")

    if kind == TransportKind.SSH and "host" not in target:
        raise JobConfigError(f"Deploy target {index} missing 'host'")
    if "remote_directory" not in target:
        raise JobConfigError(f"Deploy target {index} missing 'remote_directory'")

    host = _require_str(target.get("host", "localhost"), f"Deploy target {index} 'host'")
    port = target.get("port")
    if port is not None and not isinstance(port, int):
        raise JobConfigError(f"Deploy target {index} 'port' must be an integer")

    return DeployTarget(
        name=str(target.get("name") or f"{host}:{target['remote_directory']}"),
        kind=kind,
        host=host,
        user=_optional_str(target.get("user"), f"Deploy target {index} 'user'"),
        port=port,
        remote_directory=_require_str(target["remote_directory"], f"Deploy target {index} 'remote_directory'"),
        credential_handle=_optional_str(target.get("credential_handle"), f"Deploy target {index} 'credential_handle'"),
        post_command=_optional_str(target.get("post_command"), f"Deploy target {index} 'post_command'"),
        path_prefix=_optional_str(target.get("path_prefix"), f"Deploy target {index} 'path_prefix'"),
    )

def validate_sink(sink: Dict[str, Any], index: int) -> NotifySink:
    if not isinstance(sink, dict):
        raise JobConfigError(f"Notify sink {index} must be a dictionary")
    sink_type = sink.get("type")
    if sink_type not in SINK_TYPES:
        raise JobConfigError(f"Notify sink {index} has unknown type '{sink_type}'")
    if sink_type != "log" and not sink.get("url"):
        raise JobConfigError(f"Notify sink {index} missing 'url'")
    return NotifySink(type=sink_type, url=_optional_str(sink.get("url"), f"Notify sink {index} 'url'"))
