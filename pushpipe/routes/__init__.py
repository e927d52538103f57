from pushpipe.routes.health import router as health_router
from pushpipe.routes.builds import router as builds_router
from pushpipe.routes.webhooks import router as webhooks_router

__all__ = ["health_router", "builds_router", "webhooks_router"]
