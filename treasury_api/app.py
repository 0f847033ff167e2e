"""
Application factory for the smart payment HTTP service.

Usage:
    uvicorn treasury_api.app:create_app --factory
    # or: python -m treasury_api
"""

from __future__ import annotations

import uuid

from fastapi import FastAPI, Request
from sqlalchemy.orm import Session, sessionmaker

from treasury_api.errors import register_exception_handlers
from treasury_api.routes import router
from treasury_config import TreasuryConfig, get_active_config
from treasury_kernel import __version__
from treasury_kernel.db.engine import get_session_factory, init_engine_from_url
from treasury_kernel.db.immutability import register_immutability_listeners
from treasury_kernel.domain.clock import Clock, SystemClock
from treasury_kernel.logging_config import LogContext, configure_logging, get_logger
from treasury_modules._orm_registry import create_all_tables, import_all_orm_models

logger = get_logger("api.app")


def create_app(
    config: TreasuryConfig | None = None,
    session_factory: sessionmaker[Session] | None = None,
    clock: Clock | None = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Without a ``session_factory`` the engine is initialized from
    ``config.database.url`` and the tables are created.
    """
    config = config or get_active_config()
    configure_logging(level=config.logging.level)

    if session_factory is None:
        init_engine_from_url(config.database.url, echo=config.database.echo)
        create_all_tables()
        session_factory = get_session_factory()
    else:
        import_all_orm_models()
        register_immutability_listeners()

    app = FastAPI(
        title="Treasury Smart Payment API",
        version=__version__,
        description="Payment allocation previews, tolerance write-offs and excess handling",
    )
    app.state.config = config
    app.state.session_factory = session_factory
    app.state.clock = clock or SystemClock()

    @app.middleware("http")
    async def bind_correlation_id(request: Request, call_next):
        correlation_id = request.headers.get("x-correlation-id") or str(uuid.uuid4())
        with LogContext.bind(correlation_id=correlation_id):
            response = await call_next(request)
        response.headers["X-Correlation-Id"] = correlation_id
        return response

    register_exception_handlers(app)
    app.include_router(router)

    logger.info("api_app_created", extra={
        "config_checksum": config.checksum,
        "version": __version__,
    })
    return app
