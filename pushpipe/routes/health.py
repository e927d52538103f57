from fastapi import APIRouter, Depends, Request
import redis.asyncio as redis

from pushpipe.routes.deps import get_scheduler, get_store
from pushpipe.services.build_store import BuildStore
from pushpipe.services.scheduler import Scheduler

router = APIRouter(tags=["health"])

@router.get("/health")
async def health_check():
    return {"status": "healthy", "service": "pushpipe"}

@router.get("/health/db")
def db_health_check(store: BuildStore = Depends(get_store)):
    try:
        last = store.last_build_id()
        return {"status": "healthy", "database": "connected", "last_build_id": last}
    except Exception as e:
        return {"status": "unhealthy", "database": str(e)}

@router.get("/health/redis")
async def redis_health_check(request: Request):
    redis_url = request.app.state.settings.redis_url
    if not redis_url:
        return {"status": "healthy", "redis": "not configured"}
    try:
        client = redis.from_url(redis_url)
        await client.ping()
        await client.close()
        return {"status": "healthy", "redis": "connected"}
    except Exception as e:
        return {"status": "unhealthy", "redis": str(e)}

@router.get("/health/scheduler")
async def scheduler_health_check(scheduler: Scheduler = Depends(get_scheduler)):
    return {
        "status": "healthy",
        "queue_length": scheduler.queue.qsize(),
        "jobs": len(scheduler.jobs),
        "lanes": scheduler.status(),
    }
