"""
Webhook receiver: authenticate, normalize and enqueue push notifications.
"""

import asyncio
import hmac
import hashlib
import json
import logging
from typing import Any, Dict, Mapping, Optional

from pushpipe.errors import MalformedPayload, Unauthorized
from pushpipe.models.job import normalize_repository_url
from pushpipe.models.trigger import TriggerEvent
from pushpipe.services.dedup import DedupWindow

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-hub-signature-256"
TOKEN_HEADER = "x-pushpipe-token"

ZERO_SHA = "0" * 40

def sign(secret: str, payload: bytes) -> str:
    return "sha256=" + hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()

def verify_signature(secret: str, payload: bytes, headers: Mapping[str, str]) -> bool:
    """Accept a matching HMAC signature or shared token; no secret means no check."""
    if not secret:
        return True

    signature = headers.get(SIGNATURE_HEADER)
    if signature and hmac.compare_digest(sign(secret, payload), signature):
        return True

    token = headers.get(TOKEN_HEADER)
    if token and hmac.compare_digest(secret, token):
        return True

    return False

def normalize_ref(ref: str) -> str:
    """refs/heads/main -> main; tags and other refs are kept as-is."""
    return ref[len("refs/heads/"):] if ref.startswith("refs/heads/") else ref

def parse_push_payload(payload: Dict[str, Any]) -> Dict[str, Optional[str]]:
    """
    Extract repository identity, ref and commit from a GitHub push payload
    or the generic `{repository_id | repository_url, ref, commit_sha}` form.
    """
    if not isinstance(payload, dict):
        raise MalformedPayload("Payload must be a JSON object")

    repo = payload.get("repository")
    if isinstance(repo, dict):
        head_commit = payload.get("head_commit")
        if not isinstance(head_commit, dict):
            head_commit = {}
        pusher_info = payload.get("pusher")
        repository_id = repo.get("full_name") or repo.get("name")
        repository_url = repo.get("clone_url") or repo.get("ssh_url") or repo.get("html_url")
        commit_sha = head_commit.get("id") or payload.get("after")
        pusher = pusher_info.get("name") if isinstance(pusher_info, dict) else pusher_info
    else:
        repository_id = payload.get("repository_id") or payload.get("repo")
        repository_url = payload.get("repository_url")
        commit_sha = payload.get("commit_sha") or payload.get("sha")
        pusher = payload.get("pusher")

    ref = payload.get("ref")
    if not isinstance(repository_url, str):
        repository_url = None

    if not repository_id and repository_url:
        repository_id = normalize_repository_url(repository_url)

    missing = [
        name for name, value in (
            ("repository_id", repository_id),
            ("ref", ref),
            ("commit_sha", commit_sha),
        )
        if not value or not isinstance(value, str)
    ]
    if missing:
        raise MalformedPayload(f"Missing required fields: {', '.join(missing)}")

    return {
        "repository_id": repository_id,
        "repository_url": repository_url,
        "ref": normalize_ref(ref),
        "commit_sha": commit_sha,
        "pusher": pusher if isinstance(pusher, str) else None,
    }

class WebhookReceiver:
    """
    Turns raw requests into trigger events and enqueues them. Never waits
    for execution; the caller acknowledges receipt immediately.
    """

    def __init__(self, secret: str, dedup: DedupWindow, queue: asyncio.Queue):
        self.secret = secret
        self.dedup = dedup
        self.queue = queue
        if not secret:
            logger.warning("No webhook secret configured; trigger authentication is disabled")

    async def handle(self, body: bytes, headers: Mapping[str, str]) -> Optional[TriggerEvent]:
        """
        Authenticate, parse and enqueue. Returns None for pushes that delete
        a ref, which never start a build.
        """
        headers = {k.lower(): v for k, v in headers.items()}
        if not verify_signature(self.secret, body, headers):
            raise Unauthorized("Invalid signature")

        try:
            payload = json.loads(body)
        except (ValueError, UnicodeDecodeError):
            raise MalformedPayload("Invalid JSON payload")

        if isinstance(payload, dict) and (payload.get("deleted") or payload.get("after") == ZERO_SHA):
            logger.info(f"Ignoring ref deletion {payload.get('ref')}")
            return None

        fields = parse_push_payload(payload)
        duplicate = await self.dedup.seen((fields["repository_id"], fields["ref"], fields["commit_sha"]))

        event = TriggerEvent(duplicate=duplicate, **fields)
        self.queue.put_nowait(event)

        logger.info(
            f"Accepted trigger {event.repository_id} {event.ref}@{event.commit_sha[:12]}"
            + (" (duplicate)" if duplicate else "")
        )
        return event
