import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from sqlalchemy.exc import SQLAlchemyError

from leadops.api.routes import router as api_router
from leadops.core.config import get_settings
from leadops.logging import configure_logging
from leadops.middleware.correlation_id import CorrelationIdMiddleware
from leadops.middleware.request_logging import RequestLoggingMiddleware
from leadops.otel import configure_tracing, server_request_hook
from leadops.platform.errors import DomainError
from leadops.team.errors import to_domain_error


configure_logging()
logger = logging.getLogger("leadops.lifecycle")


def _error_response(status_code: int, code: str, message: str, **extra: object) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder({"ok": False, "code": code, "message": message, **extra}),
    )


settings = get_settings()
app = FastAPI(title=settings.app_name, version=settings.app_version)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    return _error_response(exc.status_code, exc.code, exc.message)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error_response(400, "validation_error", "invalid request payload", errors=exc.errors())


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("store.error", exc_info=exc, extra={"path": request.url.path, "error": str(exc)[:500]})
    mapped = to_domain_error(exc)
    return _error_response(mapped.status_code, mapped.code, mapped.message)


configure_tracing(settings)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=server_request_hook)
