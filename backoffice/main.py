import os

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from .config import settings
from .db import Base, SessionLocal, engine
from .errors import install_error_handlers
from .logging import RequestIdMiddleware, setup_logging
from .auth.router import router as auth_router
from .routes.analytics import router as analytics_router
from .routes.audit_logs import router as audit_logs_router
from .routes.commerce import router as commerce_router
from .routes.documents import router as documents_router
from .routes.employees import router as employees_router
from .routes.exchange_rates import router as exchange_rates_router
from .routes.feedback import router as feedback_router
from .routes.job_postings import router as job_postings_router
from .routes.notifications import router as notifications_router
from .routes.payouts import router as payouts_router
from .routes.projects import router as projects_router
from .routes.suggestions import router as suggestions_router
from .routes.surveys import router as surveys_router
from .routes.templates import router as templates_router
from .routes.workflow import router as workflow_router
from .services.workflow_engine import seed_default_rules


logger = structlog.get_logger(__name__)

API_ROUTERS = (
    projects_router,
    employees_router,
    feedback_router,
    suggestions_router,
    surveys_router,
    job_postings_router,
    documents_router,
    payouts_router,
    templates_router,
    workflow_router,
    analytics_router,
    commerce_router,
    exchange_rates_router,
    notifications_router,
    audit_logs_router,
)


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[settings.rate_limit],
        enabled=settings.rate_limit_enabled,
    )
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)

    install_error_handlers(app)

    # Routers
    app.include_router(auth_router)
    for router in API_ROUTERS:
        app.include_router(router, prefix="/api")

    @app.get("/health", tags=["health"])
    def health():
        return {"success": True, "status": "ok", "environment": settings.environment}

    # Metrics
    if settings.metrics_enabled:
        Instrumentator().instrument(app).expose(app)

    @app.on_event("startup")
    def _startup():
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            Base.metadata.create_all(bind=engine)
        db = SessionLocal()
        try:
            seeded = seed_default_rules(db)
        finally:
            db.close()
        logger.info("startup_complete", environment=settings.environment, workflow_rules_seeded=seeded)

    return app


app = create_app()
