"""
Git checkout of a build's working tree.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Optional, Tuple
from urllib.parse import urlsplit, urlunsplit

from pushpipe.errors import CheckoutError
from pushpipe.services.runner import merged_env, run_command

logger = logging.getLogger(__name__)

def inject_token(url: str, token: Optional[str]) -> str:
    """Embed an access token into an HTTPS clone URL."""
    if not token or not url.startswith("http"):
        return url
    parts = urlsplit(url)
    if parts.username:
        return url
    netloc = f"{token.strip()}@{parts.hostname}"
    if parts.port:
        netloc = f"{netloc}:{parts.port}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))

def write_private_key(key: str, directory: Optional[Path] = None) -> Path:
    """Persist key material to a 0600 file; the caller deletes it."""
    fd, path = tempfile.mkstemp(prefix="pushpipe_key_", dir=str(directory) if directory else None)
    with os.fdopen(fd, "w") as f:
        f.write(key.strip() + "\n")
    os.chmod(path, 0o600)
    return Path(path)

def remove_private_key(key_path: Optional[Path]):
    if key_path and key_path.exists():
        key_path.unlink()

def _credential_env(url: str, credential: Optional[str]) -> Tuple[str, Dict[str, str], Optional[Path]]:
    """
    HTTPS URLs get the credential as a token; anything else treats it as
    an SSH deploy key.
    """
    env = {"GIT_TERMINAL_PROMPT": "0"}
    if not credential:
        return url, env, None
    if url.startswith("http"):
        return inject_token(url, credential), env, None
    key_path = write_private_key(credential)
    env["GIT_SSH_COMMAND"] = f"ssh -i {key_path} -o IdentitiesOnly=yes -o StrictHostKeyChecking=accept-new"
    return url, env, key_path

class GitCheckout:
    """Materializes a repository at an exact commit."""

    def __init__(self, timeout: int = 120):
        self.timeout = timeout

    async def _git(self, args, log_path: Path, cwd: Optional[Path], env: Dict[str, str], redact=()):
        outcome = await run_command(
            ["git", *args],
            log_path=log_path,
            cwd=cwd,
            env=merged_env(env),
            timeout=self.timeout,
            redact=redact,
        )
        if not outcome.ok:
            raise CheckoutError(f"git {args[0]} failed: {outcome.describe(self.timeout)}")

    async def checkout(
        self,
        repository_url: str,
        commit_sha: str,
        dest: Path,
        log_path: Path,
        credential: Optional[str] = None,
    ) -> Path:
        """
        Clone into `dest` and detach at `commit_sha`.
        Raises CheckoutError on any failure.
        """
        url, env, key_path = _credential_env(repository_url, credential)
        try:
            await self._git(["clone", "--no-checkout", "--quiet", url, str(dest)], log_path, None, env,
                            redact=[(credential or "").strip()])
            try:
                await self._git(["checkout", "--quiet", "--detach", commit_sha], log_path, dest, env)
            except CheckoutError:
                # Commit may not be reachable from the default refs; fetch it explicitly
                await self._git(["fetch", "--quiet", "origin", commit_sha], log_path, dest, env)
                await self._git(["checkout", "--quiet", "--detach", commit_sha], log_path, dest, env)
        finally:
            remove_private_key(key_path)

        if url != repository_url:
            # Do not leave the token in .git/config
            await self._git(["remote", "set-url", "origin", repository_url], log_path, dest, env)

        logger.info(f"Checked out {repository_url}@{commit_sha[:12]} into {dest}")
        return dest
