from fastapi import APIRouter, Depends, HTTPException, Request
from typing import List, Optional

from pushpipe.errors import JobConfigError
from pushpipe.models.build import Build, BuildState
from pushpipe.models.job import JobDefinition
from pushpipe.routes.deps import get_scheduler, get_store
from pushpipe.services.build_store import BuildStore
from pushpipe.services.job_parser import load_jobs
from pushpipe.services.scheduler import Scheduler

router = APIRouter(tags=["builds"])

@router.get("/builds", response_model=List[Build])
def list_builds(
    job_id: Optional[str] = None,
    state: Optional[BuildState] = None,
    limit: int = 20,
    offset: int = 0,
    store: BuildStore = Depends(get_store),
):
    """List builds, newest first."""
    return store.list(
        job_id=job_id,
        state=state.value if state else None,
        limit=min(max(limit, 1), 200),
        offset=max(offset, 0),
    )

@router.get("/builds/{build_id}", response_model=Build)
def get_build(build_id: int, store: BuildStore = Depends(get_store)):
    """Get a build's current state and stage results."""
    build = store.get(build_id)
    if not build:
        raise HTTPException(status_code=404, detail="Build not found")
    return build

@router.get("/builds/{build_id}/logs")
def get_build_logs(build_id: int, store: BuildStore = Depends(get_store)):
    """Get the captured log of every executed stage."""
    build = store.get(build_id)
    if not build:
        raise HTTPException(status_code=404, detail="Build not found")

    stages = []
    for result in build.stage_results:
        logs = None
        if result.logs_ref:
            try:
                with open(result.logs_ref, "r", encoding="utf-8", errors="replace") as f:
                    logs = f.read()
            except OSError:
                logs = None
        stages.append({"stage_name": result.stage_name, "status": result.status.value, "logs": logs})

    return {"build_id": build_id, "stages": stages}

@router.get("/stats")
def get_build_stats(store: BuildStore = Depends(get_store)):
    """Count builds by state."""
    counts = store.stats()
    return {"builds": counts, "total_builds": sum(counts.values())}

@router.get("/jobs", response_model=List[JobDefinition])
def list_jobs(scheduler: Scheduler = Depends(get_scheduler)):
    """List loaded job definitions."""
    return scheduler.jobs

@router.post("/jobs/reload")
def reload_jobs(request: Request, scheduler: Scheduler = Depends(get_scheduler)):
    """Reload job definitions from disk; builds in flight are unaffected."""
    settings = request.app.state.settings
    try:
        jobs = load_jobs(settings.jobs_path)
    except JobConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))
    scheduler.reload(jobs)
    return {"status": "reloaded", "jobs": [job.name for job in jobs]}
