from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings
from .container import ApplicationContainer, build_container
from .logging import configure_logging
from ..infrastructure.persistence.sqlite import SQLitePersistence
from ..presentation.api.routers import admin as admin_router
from ..presentation.api.routers import webhooks as webhooks_router

logger = logging.getLogger(__name__)


def create_application(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings()

    app = FastAPI(title="meDIZ Billing", lifespan=_create_lifespan(settings))

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(webhooks_router.router)
    app.include_router(admin_router.router)

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        container: ApplicationContainer = app.state.container  # type: ignore[attr-defined]
        return {
            "ok": True,
            "stripe_webhook": container.stripe_service.webhook_configured,
            "hotmart_webhook": container.hotmart_service.configured,
        }

    return app


def _create_lifespan(settings: Settings):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging()
        persistence = SQLitePersistence(settings.database_path)
        container = build_container(settings, persistence)
        container.admin_auth_service.ensure_default_admin(
            settings.admin_default_email, settings.admin_default_password
        )
        if not container.stripe_service.webhook_configured:
            logger.warning("STRIPE_WEBHOOK_SECRET not set; Stripe webhooks will be rejected")
        if not container.hotmart_service.configured:
            logger.warning("HOTMART_HOTTOK not set; Hotmart webhooks will be rejected")

        app.state.container = container  # type: ignore[attr-defined]
        logger.info("Billing core ready (database: %s)", settings.database_path)

        try:
            yield
        finally:
            persistence.close()

    return lifespan
