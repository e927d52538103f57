"""
Shell command runner used by stages, checkouts and transports.
"""

import asyncio
import logging
import os
import signal
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

logger = logging.getLogger(__name__)

@dataclass
class CommandOutcome:
    exit_code: Optional[int]
    duration: float
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return not self.timed_out and self.exit_code == 0

    def describe(self, timeout: Optional[float] = None) -> str:
        if self.timed_out:
            return f"timed out after {timeout}s" if timeout else "timed out"
        return f"exit status {self.exit_code}"

def shell_command(commands: Sequence[str]) -> List[str]:
    """Join commands with && so the shell fails fast on error."""
    return ["/bin/sh", "-c", " && ".join(commands)]

def merged_env(*overrides: Optional[Dict[str, str]]) -> Dict[str, str]:
    env = os.environ.copy()
    for override in overrides:
        if override:
            env.update(override)
    return env

def _kill_group(proc: asyncio.subprocess.Process):
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass

async def run_command(
    argv: Sequence[str],
    log_path: Path,
    cwd: Optional[Union[str, Path]] = None,
    env: Optional[Dict[str, str]] = None,
    timeout: Optional[float] = None,
    stdin: Optional[bytes] = None,
    redact: Sequence[str] = (),
) -> CommandOutcome:
    """
    Run a process, appending stdout/stderr to `log_path`.

    The process runs in its own session so a timeout kills everything it
    spawned. Never raises for a nonzero exit; callers classify the outcome.
    """
    log_path.parent.mkdir(parents=True, exist_ok=True)
    started = time.monotonic()

    with log_path.open("ab") as log:
        display = " ".join(argv)
        for secret in redact:
            if secret:
                display = display.replace(secret, "***")
        log.write(f"\n$ {display}\n".encode())
        log.flush()
        logger.debug(f"Executing {display} (cwd={cwd or os.getcwd()})")

        proc = await asyncio.create_subprocess_exec(
            *argv,
            cwd=str(cwd) if cwd else None,
            env=env,
            stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
            stdout=log,
            stderr=asyncio.subprocess.STDOUT,
            start_new_session=True,
        )

        try:
            await asyncio.wait_for(proc.communicate(stdin), timeout=timeout)
        except asyncio.TimeoutError:
            _kill_group(proc)
            await proc.wait()
            log.write(f"\n!! killed after {timeout}s\n".encode())
            logger.warning(f"Command timed out after {timeout}s: {argv[0]}")
            return CommandOutcome(
                exit_code=proc.returncode,
                duration=time.monotonic() - started,
                timed_out=True,
            )
        except asyncio.CancelledError:
            _kill_group(proc)
            raise

    return CommandOutcome(exit_code=proc.returncode, duration=time.monotonic() - started)
