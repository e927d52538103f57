"""
Read-only secret stores resolving opaque credential handles.
"""

import logging
import os
import re
from pathlib import Path
from typing import Mapping, Optional

from pushpipe.errors import SecretNotFound

logger = logging.getLogger(__name__)

_HANDLE_PATTERN = re.compile(r"^[A-Za-z0-9_.\-]+$")

class SecretStore:
    """Interface: resolve a handle to secret material."""

    def get(self, handle: str) -> str:
        raise NotImplementedError

class MemorySecretStore(SecretStore):
    def __init__(self, secrets: Optional[Mapping[str, str]] = None):
        self._secrets = dict(secrets or {})

    def get(self, handle: str) -> str:
        try:
            return self._secrets[handle]
        except KeyError:
            raise SecretNotFound(f"Secret '{handle}' not found")

class EnvSecretStore(SecretStore):
    """Handles map to `PUSHPIPE_SECRET_<HANDLE>` environment variables."""

    prefix = "PUSHPIPE_SECRET_"

    def get(self, handle: str) -> str:
        name = self.prefix + re.sub(r"[^A-Za-z0-9]", "_", handle).upper()
        value = os.environ.get(name)
        if value is None:
            raise SecretNotFound(f"Secret '{handle}' not found (expected ${name})")
        return value

class FileSecretStore(SecretStore):
    """Each handle is a file under the secrets directory."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def get(self, handle: str) -> str:
        if not _HANDLE_PATTERN.match(handle) or handle.startswith("."):
            raise SecretNotFound(f"Invalid secret handle '{handle}'")
        path = self.directory / handle
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise SecretNotFound(f"Secret '{handle}' not found in {self.directory}")
        except OSError as e:
            raise SecretNotFound(f"Secret '{handle}' unreadable: {e}")

class ChainedSecretStore(SecretStore):
    """Try each store in order; the first hit wins."""

    def __init__(self, *stores: SecretStore):
        self.stores = stores

    def get(self, handle: str) -> str:
        for store in self.stores:
            try:
                return store.get(handle)
            except SecretNotFound:
                continue
        raise SecretNotFound(f"Secret '{handle}' not found")

def build_secret_store(secrets_dir: Optional[Path]) -> SecretStore:
    """Environment first, then the secrets directory when configured."""
    if secrets_dir:
        logger.info(f"Using secrets directory {secrets_dir}")
        return ChainedSecretStore(EnvSecretStore(), FileSecretStore(secrets_dir))
    return EnvSecretStore()
