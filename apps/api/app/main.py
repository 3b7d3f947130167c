from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from app.api.routes import router as api_router
from app.context import get_correlation_id
from app.core.config import Settings, get_settings
from app.core.database import Database
from app.core.events import DomainEvent, event_bus
from app.logging import configure_logging
from app.middleware.correlation_id import CorrelationIdMiddleware
from app.middleware.request_logging import RequestLoggingMiddleware
from app.otel import get_fastapi_server_request_hook, setup_otel


configure_logging()
logger = logging.getLogger("app.lifecycle")

_logged_event_types = [
    "system.started",
    "deals.bulk_reassigned",
    "deal.sales_rep.changed",
    "deal.territory.changed",
]


def _on_domain_event(event: DomainEvent) -> None:
    logger.info("domain_event", extra={"event_name": event.name})


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {"loc": list(error.get("loc", ())), "msg": str(error.get("msg", "")), "type": str(error.get("type", ""))}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={
            "error": "Invalid request data",
            "details": details,
            "correlation_id": get_correlation_id() or getattr(request.state, "correlation_id", None),
        },
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    for event_name in _logged_event_types:
        event_bus.subscribe(event_name, _on_domain_event)
    event_bus.publish("system.started", {"service": "api"})
    yield
    app.state.database.dispose()


def create_app(settings: Settings | None = None, database: Database | None = None) -> FastAPI:
    resolved = settings or get_settings()
    application = FastAPI(title=resolved.app_name, version="0.1.0", lifespan=lifespan)
    application.state.database = database or Database(resolved.database_url, auto_create=resolved.database_auto_create)

    application.add_middleware(RequestLoggingMiddleware)
    application.add_middleware(CorrelationIdMiddleware)
    application.add_exception_handler(RequestValidationError, _request_validation_handler)  # type: ignore[arg-type]
    application.include_router(api_router)

    if resolved.otel_enabled:
        setup_otel("pipeline-api", True)
    if not getattr(application, "_is_instrumented_by_opentelemetry", False):
        FastAPIInstrumentor().instrument_app(application, server_request_hook=get_fastapi_server_request_hook())
    return application


app = create_app()
