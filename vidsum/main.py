from contextlib import asynccontextmanager
import logging
import os

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from vidsum import __version__
from vidsum.config import get_settings
from vidsum.database import init_db
from vidsum.errors import BillingError
from vidsum.routers import (
    auth_router,
    billing_router,
    health_router,
    summaries_router,
    webhooks_router,
)

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield

app = FastAPI(
    title="VidSum Backend",
    version=__version__,
    lifespan=lifespan,
    swagger_ui_parameters={"persistAuthorization": True},
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(BillingError)
async def billing_error_handler(request: Request, exc: BillingError):
    if exc.status_code >= 500:
        logger.error("[API] %s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
    else:
        logger.info("[API] %s %s -> %s", request.method, request.url.path, exc.code)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

app.include_router(health_router)
app.include_router(auth_router)
app.include_router(billing_router)
app.include_router(webhooks_router)
app.include_router(summaries_router)

@app.get("/")
async def root():
    return {
        "message": "VidSum Backend API",
        "version": __version__,
        "environment": settings.environment
    }

if __name__ == "__main__":
    port = int(os.getenv("PORT", "5000"))
    uvicorn.run(
        "vidsum.main:app",
        host="0.0.0.0",
        port=port,
        reload=settings.environment != "production"
    )
