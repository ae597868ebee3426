import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from ordercore.core.exceptions import (
    OrderCoreError,
    NotFoundError,
    ValidationError,
    PaymentConflictError,
    TaxReconciliationError,
    DocumentNumberCollisionError,
    StorageUnavailableError,
)

logger = logging.getLogger(__name__)


# Most specific class first
STATUS_CODES = [
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (PaymentConflictError, status.HTTP_409_CONFLICT),
    (TaxReconciliationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (DocumentNumberCollisionError, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (StorageUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def status_code_for(exc: OrderCoreError) -> int:
    for exc_class, code in STATUS_CODES:
        if isinstance(exc, exc_class):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def order_core_error_handler(request: Request, exc: OrderCoreError) -> JSONResponse:
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {type(exc).__name__}: {exc.message}")

    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(
        status_code=status_code,
        content={
            "detail": exc.message,
            "error": type(exc).__name__,
            "details": exc.details,
            "retryable": exc.retryable,
        },
        headers=headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(OrderCoreError, order_core_error_handler)
