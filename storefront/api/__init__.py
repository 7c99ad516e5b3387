# storefront/api/__init__.py
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from storefront.domain.errors import StoreError
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    """Map StoreError subclasses to their HTTP status."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.message, "errorType": type(exc).__name__},
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies are a plain 400 ValidationError, like every other input error."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{field}: {first.get('msg', 'invalid value')}" if field else first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=400,
        content={"message": message, "errorType": "ValidationError"},
    )


def register_error_handlers(app: FastAPI):
    app.add_exception_handler(StoreError, store_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
