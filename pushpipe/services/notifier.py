"""
Deliver terminal build outcomes to notification sinks.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from pushpipe.models.build import Build, BuildState, StageStatus
from pushpipe.models.job import JobDefinition, NotifySink

logger = logging.getLogger(__name__)

def build_message(build: Build) -> Dict[str, Any]:
    """Outbound payload shared by every sink."""
    return {
        "build_id": build.build_id,
        "job_id": build.job_id,
        "final_state": build.state.value,
        "repository_id": build.trigger.repository_id,
        "ref": build.trigger.ref,
        "commit_sha": build.trigger.commit_sha,
        "stage_results": [r.model_dump(mode="json") for r in build.stage_results],
        "error": build.error,
        "duration": build.duration,
    }

def summarize(build: Build) -> str:
    """One human-readable line plus details of what went wrong."""
    icon = {
        BuildState.SUCCEEDED: "✅",
        BuildState.FAILED: "❌",
        BuildState.ERRORED: "⚠️",
        BuildState.CANCELLED: "⏭️",
    }.get(build.state, "")
    lines = [
        f"{icon} {build.job_id} #{build.build_id} {build.state.value} "
        f"({build.trigger.ref}@{build.trigger.commit_sha[:12]})"
    ]
    if build.error:
        lines.append(f"error: {build.error}")
    for result in build.stage_results:
        if result.status == StageStatus.FAILED:
            suffix = " (best effort)" if result.best_effort else ""
            lines.append(f"stage {result.stage_name} failed{suffix}: {result.exit_detail}")
        for target in result.targets:
            if not target.ok:
                lines.append(
                    f"target {target.target}: transferred={target.transferred} "
                    f"post_command_ok={target.post_command_ok}"
                )
    return "\n".join(lines)

class Notifier:
    """
    Sends exactly one delivery per terminal build to every configured sink.
    Sink failures are logged and never affect the build.
    """

    def __init__(
        self,
        webhook_urls: Sequence[str] = (),
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.webhook_urls = list(webhook_urls)
        self.timeout = timeout
        self._client = client

    def sinks_for(self, job: Optional[JobDefinition]) -> List[NotifySink]:
        sinks = [NotifySink(type="webhook", url=url) for url in self.webhook_urls]
        if job:
            sinks.extend(job.notify)
        return sinks

    async def notify(self, build: Build, job: Optional[JobDefinition] = None):
        message = build_message(build)
        logger.info(summarize(build))

        for sink in self.sinks_for(job):
            try:
                await self._deliver(sink, build, message)
            except (httpx.HTTPError, ValueError) as e:
                logger.warning(f"Notification to {sink.type} sink failed for build {build.build_id}: {e}")

    async def _deliver(self, sink: NotifySink, build: Build, message: Dict[str, Any]):
        if sink.type == "log":
            return
        if not sink.url:
            raise ValueError(f"{sink.type} sink has no url")

        if sink.type == "slack":
            body = {"text": summarize(build)}
        elif sink.type == "webhook":
            body = message
        else:
            raise ValueError(f"Unknown sink type '{sink.type}'")

        if self._client is not None:
            response = await self._client.post(sink.url, json=body, timeout=self.timeout)
            response.raise_for_status()
            return

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(sink.url, json=body)
            response.raise_for_status()
