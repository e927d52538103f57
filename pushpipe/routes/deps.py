from fastapi import Request

from pushpipe.services.build_store import BuildStore
from pushpipe.services.receiver import WebhookReceiver
from pushpipe.services.scheduler import Scheduler

def get_receiver(request: Request) -> WebhookReceiver:
    return request.app.state.receiver

def get_scheduler(request: Request) -> Scheduler:
    return request.app.state.scheduler

def get_store(request: Request) -> BuildStore:
    return request.app.state.store
