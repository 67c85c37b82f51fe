"""FastAPI application factory."""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, List

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from pushsaas import __version__
from pushsaas.api.v1 import api_router
from pushsaas.config import settings
from pushsaas.core.logging import setup_logging
from pushsaas.db.session import SessionLocal
from pushsaas.services.dispatcher import CampaignDispatcher
from pushsaas.services.push_provider import PushDeliveryProvider, build_push_provider
from pushsaas.services.scheduler import CampaignScheduler


tags_metadata: List[dict[str, str]] = [
    {"name": "campaigns", "description": "Create, schedule and send push campaigns."},
    {"name": "segments", "description": "Reusable audience targeting rules."},
    {"name": "subscriptions", "description": "Browser push subscription intake."},
    {"name": "scheduler", "description": "Scheduled campaign introspection."},
]


def create_app(
    *,
    session_factory: Callable[[], Session] | None = None,
    push_provider: PushDeliveryProvider | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    One dispatcher and one scheduler are built per application and shared
    by every request through ``app.state``.
    """

    setup_logging()
    session_factory = session_factory or SessionLocal
    dispatcher = CampaignDispatcher(session_factory, push_provider or build_push_provider())
    scheduler = CampaignScheduler(dispatcher, session_factory)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if settings.SCHEDULER_ENABLED:
            await scheduler.start()
        try:
            yield
        finally:
            await scheduler.stop()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Push notification campaigns with segment targeting and scheduling.",
        version=__version__,
        openapi_tags=tags_metadata,
        docs_url=f"{settings.API_V1_STR}/docs",
        redoc_url=f"{settings.API_V1_STR}/redoc",
        lifespan=lifespan,
    )
    app.state.dispatcher = dispatcher
    app.state.scheduler = scheduler

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.BACKEND_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": jsonable_encoder(exc.errors()), "message": "Validation failed"},
        )

    @app.get("/health", tags=["health"])
    def health() -> dict:
        return {"status": "ok", "scheduler": scheduler.get_stats().is_running}

    app.include_router(api_router, prefix=settings.API_V1_STR)
    return app


app = create_app()
