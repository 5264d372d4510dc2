import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from tq_database.session import dispose_engine

from tq_backend.api.routes import batch, issues, repositories, settings as settings_routes, sync
from tq_backend.core.config import get_settings
from tq_backend.core.errors import (
    TriageError,
    provider_exception_handler,
    triage_exception_handler,
)
from tq_backend.core.logging_config import setup_logging
from tq_backend.providers.base import ProviderAPIError
from tq_backend.providers.registry import close_providers
from tq_backend.services.token_service import TokenEncryptionError

settings = get_settings()

instance_id = setup_logging(settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("TriageQueue API starting", extra={"environment": settings.environment})
    yield
    await close_providers()
    await dispose_engine()


app = FastAPI(
    title="TriageQueue API",
    description="Unified issue triage inbox over GitHub and GitLab",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_exception_handler(TriageError, triage_exception_handler)
app.add_exception_handler(ProviderAPIError, provider_exception_handler)
app.add_exception_handler(TokenEncryptionError, provider_exception_handler)

if settings.environment == "production" and not settings.cors_origins:
    raise ValueError("CORS_ORIGINS must be configured in production")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins.split(",") if settings.cors_origins else ["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=86400,
)


@app.get("/health")
async def health_check():
    return {"status": "ok"}


app.include_router(issues.router, prefix="/issues", tags=["issues"])
app.include_router(repositories.router, prefix="/repos", tags=["repositories"])
app.include_router(sync.router, prefix="/sync", tags=["sync"])
app.include_router(batch.router, prefix="/batch", tags=["batch"])
app.include_router(settings_routes.router, prefix="/settings", tags=["settings"])
