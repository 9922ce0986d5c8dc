from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from marketplace.domain.exceptions import (
    Conflict, InvalidState, MarketplaceError, NotFound, PermissionDenied, ValidationError,
)
from shared.core import get_logger

logger = get_logger(__name__)

STATUS_CODES = {
    NotFound: 404,
    PermissionDenied: 403,
    InvalidState: 409,
    Conflict: 409,
    ValidationError: 422,
}


def status_code_for(exc: MarketplaceError) -> int:
    for exc_type in type(exc).__mro__:
        if exc_type in STATUS_CODES:
            return STATUS_CODES[exc_type]
    return 400


async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
    status_code = status_code_for(exc)
    logger.info(
        f"{request.method} {request.url.path} rejected: {exc.message}",
        extra={'extra_fields': {'error': type(exc).__name__, 'status_code': status_code}},
    )
    return JSONResponse(status_code=status_code, content={"detail": exc.message})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(MarketplaceError, marketplace_error_handler)
