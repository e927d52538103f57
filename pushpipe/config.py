from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings
from functools import lru_cache

class Settings(BaseSettings):
    database_url: str = "sqlite:///./pushpipe.db"
    redis_url: Optional[str] = None
    webhook_secret: str = ""
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    log_level: str = "INFO"

    # Job definitions: a YAML file with a `jobs:` list or a directory of documents
    jobs_path: Path = Path("jobs.yml")

    # Trigger deduplication
    dedup_window_seconds: int = 300
    dedup_max_entries: int = 10000

    # Scheduling
    max_concurrent_builds: int = 4

    # Execution
    stage_timeout: int = 600  # 10 minutes default
    checkout_timeout: int = 120
    transfer_timeout: int = 300
    workspace_root: Optional[Path] = None
    logs_dir: Path = Path("./.pushpipe/logs")
    keep_workspaces: bool = False

    # Secrets and transports
    secrets_dir: Optional[Path] = None
    ssh_options: List[str] = ["-o", "StrictHostKeyChecking=accept-new", "-o", "BatchMode=yes"]

    # Notification
    notify_webhook_urls: List[str] = []
    notify_timeout: float = 10.0

    class Config:
        env_file = ".env"
        env_prefix = "PUSHPIPE_"

@lru_cache()
def get_settings() -> Settings:
    return Settings()
