"""
Push notification endpoints.
"""

from fastapi import APIRouter, Request, HTTPException, Header, Depends
from fastapi.responses import JSONResponse
from typing import Optional
import logging

from pushpipe.errors import MalformedPayload, Unauthorized
from pushpipe.routes.deps import get_receiver
from pushpipe.services.receiver import WebhookReceiver

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

async def _accept(request: Request, receiver: WebhookReceiver) -> JSONResponse:
    body = await request.body()
    try:
        event = await receiver.handle(body, request.headers)
    except Unauthorized as e:
        raise HTTPException(status_code=401, detail=str(e))
    except MalformedPayload as e:
        raise HTTPException(status_code=400, detail=str(e))

    if event is None:
        return JSONResponse(status_code=202, content={"status": "ignored", "reason": "ref deleted"})

    return JSONResponse(
        status_code=202,
        content={
            "status": "accepted",
            "repository_id": event.repository_id,
            "ref": event.ref,
            "commit_sha": event.commit_sha,
            "duplicate": event.duplicate,
        },
    )

@router.post("/github")
async def github_webhook(
    request: Request,
    receiver: WebhookReceiver = Depends(get_receiver),
    x_github_event: Optional[str] = Header(None),
):
    """
    Receive GitHub webhook events.
    """
    if x_github_event == "ping":
        return {"status": "pong", "message": "Webhook configured successfully"}

    if x_github_event not in (None, "push"):
        return JSONResponse(
            status_code=202,
            content={
                "status": "ignored",
                "event": x_github_event,
                "message": f"Event type '{x_github_event}' not handled",
            },
        )

    return await _accept(request, receiver)

@router.post("/push")
async def generic_webhook(request: Request, receiver: WebhookReceiver = Depends(get_receiver)):
    """Receive a normalized push notification from any source."""
    return await _accept(request, receiver)
