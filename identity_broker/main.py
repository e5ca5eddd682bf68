"""FastAPI application entry point."""
import logging
import logging.config
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine
from starlette.middleware.sessions import SessionMiddleware

from identity_broker.api import admin, oauth, routes
from identity_broker.config import Settings, settings as default_settings
from identity_broker.connectors.google import WORKSPACE_SCOPES, GoogleConnector
from identity_broker.connectors.quickbooks import QuickBooksConnector
from identity_broker.database import build_engine, build_session_factory, init_db
from identity_broker.errors import BrokerError
from identity_broker.flow import AuthorizationFlow
from identity_broker.middleware.rate_limit import RateLimitMiddleware
from identity_broker.store import CustomerStore
from identity_broker.validators import AccountingCredentialValidator, WorkspaceTokenValidator

logging.config.dictConfig({
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            "datefmt": "%Y-%m-%dT%H:%M:%S",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
        },
    },
    "root": {
        "level": default_settings.log_level.upper(),
        "handlers": ["console"],
    },
})

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Identity broker starting up, initializing database tables")
    engine = app.state.engine
    if engine is not None:
        try:
            init_db(engine)
            logger.info("Database ready")
        except Exception as e:
            # Server still binds so /health answers while the database is down
            logger.warning("Database init failed (server will start anyway): %s", e)
    yield
    logger.info("Identity broker shutting down")


def create_app(
    settings: Optional[Settings] = None,
    *,
    engine: Optional[Engine] = None,
    store: Optional[CustomerStore] = None,
    google: Optional[GoogleConnector] = None,
    quickbooks: Optional[QuickBooksConnector] = None,
    workspace_validator: Optional[WorkspaceTokenValidator] = None,
    accounting_validator: Optional[AccountingCredentialValidator] = None,
) -> FastAPI:
    """Build the app with explicitly constructed services; tests pass their own."""
    settings = settings or default_settings
    if store is None:
        engine = engine or build_engine(settings.database_url)
        store = CustomerStore(build_session_factory(engine))

    app = FastAPI(
        title="Identity Broker",
        description="Issues, stores and serves Google Workspace and QuickBooks OAuth tokens per customer.",
        version="0.3.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.engine = engine
    app.state.store = store
    app.state.flow = AuthorizationFlow(
        store,
        google or GoogleConnector(settings),
        quickbooks or QuickBooksConnector(settings),
        settings,
    )
    app.state.workspace_validator = workspace_validator or WorkspaceTokenValidator(
        timeout=settings.token_validation_timeout_seconds
    )
    app.state.accounting_validator = accounting_validator or AccountingCredentialValidator()

    app.add_middleware(
        RateLimitMiddleware,
        requests_per_minute_ip=settings.rate_limit_requests_per_minute_ip,
        requests_per_minute_customer=settings.rate_limit_requests_per_minute_customer,
        exempt_paths=["/health"],
    )
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret,
        session_cookie="broker_session",
        same_site="lax",
        https_only=settings.environment == "production",
    )

    @app.exception_handler(BrokerError)
    async def broker_error_handler(request: Request, exc: BrokerError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    app.include_router(oauth.router, tags=["oauth"])
    app.include_router(routes.router, prefix="/api", tags=["api"])
    app.include_router(admin.router, prefix="/admin", tags=["admin"])

    @app.get("/health")
    def health():
        return {
            "status": "ok",
            "time": datetime.now(timezone.utc).isoformat(),
            "scopes": WORKSPACE_SCOPES,
        }

    return app


app = create_app()
