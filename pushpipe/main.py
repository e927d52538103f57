"""
Pushpipe - webhook-driven build and deploy service.
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager, suppress
from typing import List, Optional

from fastapi import FastAPI

from pushpipe.config import Settings, get_settings
from pushpipe.db.database import create_db_engine, create_session_factory, init_db
from pushpipe.models.job import JobDefinition
from pushpipe.routes import builds_router, health_router, webhooks_router
from pushpipe.services.build_store import BuildStore
from pushpipe.services.dedup import build_dedup_window
from pushpipe.services.executor import PipelineExecutor
from pushpipe.services.git import GitCheckout
from pushpipe.services.job_parser import load_jobs
from pushpipe.services.notifier import Notifier
from pushpipe.services.receiver import WebhookReceiver
from pushpipe.services.scheduler import Scheduler
from pushpipe.services.secrets import SecretStore, build_secret_store
from pushpipe.services.transport import TransportRegistry, default_registry

logger = logging.getLogger(__name__)

def configure_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)]
    )

def create_app(
    settings: Optional[Settings] = None,
    jobs: Optional[List[JobDefinition]] = None,
    secrets: Optional[SecretStore] = None,
    transports: Optional[TransportRegistry] = None,
    checkout: Optional[GitCheckout] = None,
    notifier: Optional[Notifier] = None,
) -> FastAPI:
    """
    Build the application. Collaborators default to what the settings
    describe; tests pass their own.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Pushpipe")

        engine = create_db_engine(settings.database_url)
        init_db(engine)
        store = BuildStore(create_session_factory(engine))

        job_list = jobs if jobs is not None else load_jobs(settings.jobs_path)
        secret_store = secrets or build_secret_store(settings.secrets_dir)

        executor = PipelineExecutor(
            secrets=secret_store,
            checkout=checkout or GitCheckout(timeout=settings.checkout_timeout),
            transports=transports or default_registry(
                secret_store,
                ssh_options=settings.ssh_options,
                timeout=settings.transfer_timeout,
            ),
            logs_dir=settings.logs_dir,
            stage_timeout=settings.stage_timeout,
            workspace_root=settings.workspace_root,
            keep_workspaces=settings.keep_workspaces,
            on_progress=store.save,
        )

        queue: asyncio.Queue = asyncio.Queue()
        scheduler = Scheduler(
            jobs=job_list,
            executor=executor,
            store=store,
            notifier=notifier or Notifier(settings.notify_webhook_urls, timeout=settings.notify_timeout),
            max_concurrent_builds=settings.max_concurrent_builds,
            queue=queue,
        )
        dedup = build_dedup_window(
            settings.redis_url,
            settings.dedup_window_seconds,
            settings.dedup_max_entries,
        )

        app.state.settings = settings
        app.state.store = store
        app.state.scheduler = scheduler
        app.state.receiver = WebhookReceiver(settings.webhook_secret, dedup, queue)

        serve_task = asyncio.create_task(scheduler.serve())
        try:
            yield
        finally:
            logger.info("Shutting down Pushpipe")
            serve_task.cancel()
            with suppress(asyncio.CancelledError):
                await serve_task
            await dedup.close()
            engine.dispose()

    app = FastAPI(
        title="Pushpipe",
        description="Push-triggered build and deploy pipelines",
        version="0.1.0",
        lifespan=lifespan
    )

    app.include_router(health_router)
    app.include_router(builds_router, prefix="/api")
    app.include_router(webhooks_router, prefix="/api")

    @app.get("/")
    async def root():
        return {
            "name": "Pushpipe",
            "version": "0.1.0",
            "docs": "/docs"
        }

    return app

def run():
    """Console entry point."""
    import uvicorn

    settings = get_settings()
    configure_logging(settings.log_level)
    uvicorn.run(create_app(settings), host=settings.api_host, port=settings.api_port)

if __name__ == "__main__":
    run()
