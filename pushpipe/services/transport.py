"""
Deployment transports: push selected artifacts to a target and optionally
run a command there.
"""

import asyncio
import io
import logging
import shlex
import shutil
import tarfile
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Dict, List, Optional, Sequence

from pushpipe.errors import PushpipeError, TransportError
from pushpipe.models.build import TransferResult
from pushpipe.models.job import DeployTarget, TransportKind
from pushpipe.services.git import remove_private_key, write_private_key
from pushpipe.services.runner import merged_env, run_command
from pushpipe.services.secrets import SecretStore

logger = logging.getLogger(__name__)

@dataclass
class ArtifactSet:
    root: Path
    files: List[str] = field(default_factory=list)  # POSIX paths relative to root

def collect_artifacts(root: Path, patterns: Sequence[str]) -> ArtifactSet:
    """Match glob patterns against the workspace; only regular files inside root."""
    root = root.resolve()
    matched = set()
    for pattern in patterns:
        for path in root.glob(pattern):
            if path.is_dir():
                candidates = [p for p in path.rglob("*") if p.is_file()]
            elif path.is_file():
                candidates = [path]
            else:
                continue
            for candidate in candidates:
                resolved = candidate.resolve()
                if root not in resolved.parents:
                    continue
                rel = resolved.relative_to(root).as_posix()
                if rel == ".git" or rel.startswith(".git/"):
                    continue
                matched.add(rel)
    return ArtifactSet(root=root, files=sorted(matched))

def destination_path(rel_path: str, path_prefix: Optional[str]) -> str:
    """Strip the configured source prefix; other paths are copied as-is."""
    if not path_prefix:
        return rel_path
    prefix = PurePosixPath(path_prefix.strip("/"))
    path = PurePosixPath(rel_path)
    try:
        stripped = path.relative_to(prefix)
    except ValueError:
        return rel_path
    return stripped.as_posix() if stripped.parts else path.name

class DeploymentTransport:
    """Base class; variants implement `_transfer` and `_run_post_command`."""

    kind: TransportKind

    async def deploy(self, artifacts: ArtifactSet, target: DeployTarget, log_path: Path) -> TransferResult:
        """
        Transfer then run the post command. File transfer and post command
        outcomes are tracked independently; errors never escape.
        """
        result = TransferResult(target=target.name, host=target.host)
        try:
            await self._transfer(artifacts, target, log_path)
        except (PushpipeError, OSError) as e:
            logger.error(f"Transfer to {target.name} ({target.host}) failed: {e}")
            result.detail = f"transfer failed: {e}"
            return result

        result.transferred = True
        result.files = [destination_path(f, target.path_prefix) for f in artifacts.files]
        logger.info(f"Transferred {len(artifacts.files)} files to {target.name}:{target.remote_directory}")

        if target.post_command:
            try:
                await self._run_post_command(target, log_path)
                result.post_command_ok = True
            except (PushpipeError, OSError) as e:
                logger.error(f"Post command on {target.name} failed: {e}")
                result.post_command_ok = False
                result.detail = f"post command failed: {e}"
        return result

    async def _transfer(self, artifacts: ArtifactSet, target: DeployTarget, log_path: Path):
        raise NotImplementedError

    async def _run_post_command(self, target: DeployTarget, log_path: Path):
        raise NotImplementedError

class LocalTransport(DeploymentTransport):
    """Copies into a directory on this host."""

    kind = TransportKind.LOCAL

    def __init__(self, timeout: int = 300):
        self.timeout = timeout

    async def _transfer(self, artifacts: ArtifactSet, target: DeployTarget, log_path: Path):
        await asyncio.to_thread(self._copy, artifacts, target)

    def _copy(self, artifacts: ArtifactSet, target: DeployTarget):
        dest_root = Path(target.remote_directory)
        for rel in artifacts.files:
            dest = dest_root / destination_path(rel, target.path_prefix)
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(artifacts.root / rel, dest)

    async def _run_post_command(self, target: DeployTarget, log_path: Path):
        outcome = await run_command(
            ["/bin/sh", "-c", target.post_command],
            log_path=log_path,
            cwd=target.remote_directory,
            env=merged_env(),
            timeout=self.timeout,
        )
        if not outcome.ok:
            raise TransportError(outcome.describe(self.timeout))

class SSHTransport(DeploymentTransport):
    """
    Streams a tar archive over an OpenSSH session and extracts it in the
    remote directory, overwriting existing files.
    """

    kind = TransportKind.SSH

    def __init__(self, secrets: SecretStore, ssh_options: Sequence[str] = (), timeout: int = 300):
        self.secrets = secrets
        self.ssh_options = list(ssh_options)
        self.timeout = timeout

    def ssh_command(self, target: DeployTarget, remote_command: str, key_path: Optional[Path] = None) -> List[str]:
        argv = ["ssh"]
        if key_path:
            argv += ["-i", str(key_path), "-o", "IdentitiesOnly=yes"]
        argv += self.ssh_options
        if target.port:
            argv += ["-p", str(target.port)]
        argv += [target.destination, remote_command]
        return argv

    def build_archive(self, artifacts: ArtifactSet, path_prefix: Optional[str]) -> bytes:
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w") as tar:
            for rel in artifacts.files:
                tar.add(str(artifacts.root / rel), arcname=destination_path(rel, path_prefix))
        return buffer.getvalue()

    async def _ssh(self, target: DeployTarget, remote_command: str, log_path: Path, stdin: Optional[bytes] = None):
        key_path = None
        if target.credential_handle:
            key_path = write_private_key(self.secrets.get(target.credential_handle))
        try:
            outcome = await run_command(
                self.ssh_command(target, remote_command, key_path),
                log_path=log_path,
                env=merged_env(),
                timeout=self.timeout,
                stdin=stdin,
            )
        finally:
            remove_private_key(key_path)
        if not outcome.ok:
            # ssh exits 255 when the connection itself failed
            if outcome.exit_code == 255:
                raise TransportError(f"{target.destination} unreachable")
            raise TransportError(outcome.describe(self.timeout))

    async def _transfer(self, artifacts: ArtifactSet, target: DeployTarget, log_path: Path):
        directory = shlex.quote(target.remote_directory)
        archive = await asyncio.to_thread(self.build_archive, artifacts, target.path_prefix)
        await self._ssh(target, f"mkdir -p {directory} && tar -xf - -C {directory}", log_path, stdin=archive)

    async def _run_post_command(self, target: DeployTarget, log_path: Path):
        directory = shlex.quote(target.remote_directory)
        await self._ssh(target, f"cd {directory} && {target.post_command}", log_path)

class TransportRegistry:
    """Selects a transport by the target's configured kind."""

    def __init__(self, transports: Dict[TransportKind, DeploymentTransport]):
        self._transports = dict(transports)

    def for_target(self, target: DeployTarget) -> DeploymentTransport:
        try:
            return self._transports[target.kind]
        except KeyError:
            raise TransportError(f"No transport registered for kind '{target.kind.value}'")

def default_registry(secrets: SecretStore, ssh_options: Sequence[str] = (), timeout: int = 300) -> TransportRegistry:
    return TransportRegistry({
        TransportKind.SSH: SSHTransport(secrets, ssh_options=ssh_options, timeout=timeout),
        TransportKind.LOCAL: LocalTransport(timeout=timeout),
    })
