from fastapi import Request, status
from fastapi.responses import JSONResponse

from pdp_coach.core.exceptions import (
    BusinessRuleError,
    ConflictError,
    DomainError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from pdp_coach.core.logging import get_logger
from pdp_coach.schemas.base import APIError, ErrorResponse, ResponseMeta

logger = get_logger(__name__)

ERROR_STATUS_MAP: dict[type[DomainError], int] = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ValidationError: status.HTTP_400_BAD_REQUEST,
    BusinessRuleError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ConflictError: status.HTTP_409_CONFLICT,
    PersistenceError: status.HTTP_503_SERVICE_UNAVAILABLE,
}

# Seconds a client should wait before retrying a failed write
PERSISTENCE_RETRY_AFTER = 2


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    status_code = ERROR_STATUS_MAP.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
    request_id = getattr(request.state, "request_id", None)

    log = logger.error if status_code >= 500 else logger.info
    log("Domain error", code=exc.code, status_code=status_code, request_id=request_id)

    body = ErrorResponse(
        meta=ResponseMeta(request_id=request_id),
        errors=[APIError(code=exc.code, message=exc.message, details=exc.details)],
    )
    headers = None
    if isinstance(exc, PersistenceError) and exc.retryable:
        headers = {"Retry-After": str(PERSISTENCE_RETRY_AFTER)}

    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json"),
        headers=headers,
    )
