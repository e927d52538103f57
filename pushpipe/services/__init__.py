from pushpipe.services.build_store import BuildStore
from pushpipe.services.dedup import (
    DedupWindow,
    MemoryDedupWindow,
    RedisDedupWindow,
    build_dedup_window,
)
from pushpipe.services.executor import PipelineExecutor
from pushpipe.services.git import GitCheckout
from pushpipe.services.job_parser import (
    load_jobs,
    parse_jobs_config,
    parse_job_dict,
)
from pushpipe.services.notifier import Notifier
from pushpipe.services.receiver import WebhookReceiver, verify_signature, parse_push_payload
from pushpipe.services.scheduler import Scheduler
from pushpipe.services.secrets import (
    SecretStore,
    MemorySecretStore,
    EnvSecretStore,
    FileSecretStore,
    build_secret_store,
)
from pushpipe.services.transport import (
    ArtifactSet,
    DeploymentTransport,
    LocalTransport,
    SSHTransport,
    TransportRegistry,
    collect_artifacts,
    default_registry,
)

__all__ = [
    "BuildStore",
    "DedupWindow",
    "MemoryDedupWindow",
    "RedisDedupWindow",
    "build_dedup_window",
    "PipelineExecutor",
    "GitCheckout",
    "load_jobs",
    "parse_jobs_config",
    "parse_job_dict",
    "Notifier",
    "WebhookReceiver",
    "verify_signature",
    "parse_push_payload",
    "Scheduler",
    "SecretStore",
    "MemorySecretStore",
    "EnvSecretStore",
    "FileSecretStore",
    "build_secret_store",
    "ArtifactSet",
    "DeploymentTransport",
    "LocalTransport",
    "SSHTransport",
    "TransportRegistry",
    "collect_artifacts",
    "default_registry",
]
