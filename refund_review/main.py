"""Refund Review Service.

This service provides APIs for reviewers to inspect flagged refunds, record
decisions with an audit trail, and follow a scoped live notification feed.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from refund_review.api.routes import api_router
from refund_review.core.auth import close_async_http_client
from refund_review.core.config import AppEnvironment, Settings, get_settings
from refund_review.core.database import create_async_engine, create_schema, create_session_factory
from refund_review.core.errors import RefundReviewError, get_status_code
from refund_review.core.logging import setup_logging
from refund_review.persistence.sql_store import SqlStore
from refund_review.realtime.change_feed import ChangeFeed
from refund_review.services.notification_fanout import NotificationFanout
from refund_review.services.reviewer_directory import ReviewerDirectory

logger = logging.getLogger(__name__)

# API version prefix
API_V1_PREFIX = "/api/v1"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan context manager."""
    settings = get_settings()
    setup_logging(settings)

    logger.info(
        "Starting Refund Review Service",
        extra={
            "app": settings.app.name,
            "env": settings.app.env,
            "version": settings.app.version,
        },
    )

    engine = create_async_engine(settings.database)
    if settings.database.is_sqlite:
        await create_schema(engine)

    feed = ChangeFeed()
    store = SqlStore(create_session_factory(engine), feed)
    fanout = NotificationFanout(store, feed, ReviewerDirectory(store), settings.notifications)

    app.state.settings = settings
    app.state.engine = engine
    app.state.feed = feed
    app.state.store = store
    app.state.fanout = fanout

    await fanout.start()

    yield

    await fanout.stop()
    await close_async_http_client()
    await engine.dispose()

    logger.info("Refund Review Service stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Refund Review Service",
        description="Review workflow for machine-flagged refund transactions",
        version=settings.app.version,
        lifespan=lifespan,
        docs_url="/docs" if settings.app.env != AppEnvironment.PROD else None,
        redoc_url="/redoc" if settings.app.env != AppEnvironment.PROD else None,
        openapi_url="/openapi.json" if settings.app.env != AppEnvironment.PROD else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.security.cors_allowed_origins,
        allow_credentials=settings.security.cors_allow_credentials,
        allow_methods=settings.security.cors_allow_methods,
        allow_headers=settings.security.cors_allow_headers,
    )

    app.include_router(api_router, prefix=API_V1_PREFIX)

    setup_telemetry(app, settings)

    @app.exception_handler(RefundReviewError)
    async def domain_error_handler(  # type: ignore[reportUnusedFunction]
        request: Request, exc: RefundReviewError
    ) -> JSONResponse:
        """Handle domain-specific errors and return appropriate HTTP responses."""
        status_code = get_status_code(exc)
        return JSONResponse(
            status_code=status_code,
            content={
                "detail": exc.message,
                "reason": exc.reason,
                **({"errors": exc.details} if exc.details else {}),
            },
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(  # type: ignore[reportUnusedFunction]
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions and return 500 error responses."""
        logger.exception(
            "Unhandled exception",
            extra={
                "path": request.url.path,
                "method": request.method,
                "error": str(exc),
            },
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "reason": "internal_error"},
        )

    return app


def setup_telemetry(app: FastAPI, settings: Settings) -> None:
    """Setup OpenTelemetry instrumentation."""
    if not settings.observability.otlp_endpoint:
        return

    resource = Resource(attributes={SERVICE_NAME: settings.observability.service_name})

    provider = TracerProvider(resource=resource)
    exporter = OTLPSpanExporter(
        endpoint=settings.observability.otlp_endpoint,
        insecure=settings.observability.otlp_insecure,
    )
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)

    FastAPIInstrumentor.instrument_app(app)


def run() -> None:
    """Run the application using uvicorn."""
    import uvicorn

    settings = get_settings()

    # The change feed is in-process, so live notifications need a single worker
    uvicorn.run(
        "refund_review.main:create_app",
        factory=True,
        host=settings.server.host,
        port=settings.server.port,
        reload=settings.app.env == AppEnvironment.LOCAL,
        workers=1,
        log_level=settings.app.log_level.value.lower(),
    )


if __name__ == "__main__":
    run()
