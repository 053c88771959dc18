from vidsum.routers.health import router as health_router
from vidsum.routers.auth import router as auth_router
from vidsum.routers.billing import router as billing_router
from vidsum.routers.webhooks import router as webhooks_router
from vidsum.routers.summaries import router as summaries_router

__all__ = ["health_router", "auth_router", "billing_router", "webhooks_router", "summaries_router"]
