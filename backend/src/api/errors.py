"""
Translation of service exceptions into JSON error responses.

Every error body has the same shape::

    {"success": false, "message": ..., "error_code": ..., "request_id": ...}

Precondition failures add ``token_kind``; rejected transitions add
``valid_transitions``.
"""

from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.core.logging import get_logger, get_request_id
from src.services.auth.service import AuthenticationError
from src.services.auth.sessions import SessionStoreError
from src.services.catalog.repository import CatalogRepositoryError, ProductNotFoundError
from src.services.catalog.service import CatalogServiceError, CatalogValidationError
from src.services.orders.repository import OrderNotFoundError, OrderRepositoryError
from src.services.orders.service import (
    BusinessRuleError,
    ConsistencyError,
    OrderServiceError,
    OrderValidationError,
)
from src.services.orders.state_machine import StateTransitionError
from src.services.payments.repository import PaymentRepositoryError
from src.services.payments.service import (
    PaymentIntegrityError,
    PaymentNotFoundError,
    PaymentServiceError,
    PaymentStateError,
    PaymentValidationError,
)
from src.services.preconditions.validator import PreconditionError

logger = get_logger(__name__)

# Most specific first; the first isinstance match wins.
ERROR_STATUS: list[tuple[type[Exception], int, str]] = [
    (PreconditionError, status.HTTP_400_BAD_REQUEST, "PRECONDITION_FAILED"),
    (OrderValidationError, status.HTTP_400_BAD_REQUEST, "VALIDATION_ERROR"),
    (CatalogValidationError, status.HTTP_400_BAD_REQUEST, "VALIDATION_ERROR"),
    (PaymentValidationError, status.HTTP_400_BAD_REQUEST, "VALIDATION_ERROR"),
    (OrderNotFoundError, status.HTTP_404_NOT_FOUND, "ORDER_NOT_FOUND"),
    (ProductNotFoundError, status.HTTP_404_NOT_FOUND, "PRODUCT_NOT_FOUND"),
    (PaymentNotFoundError, status.HTTP_404_NOT_FOUND, "PAYMENT_NOT_FOUND"),
    (BusinessRuleError, status.HTTP_409_CONFLICT, "BUSINESS_RULE_VIOLATION"),
    (StateTransitionError, status.HTTP_409_CONFLICT, "INVALID_STATUS_TRANSITION"),
    (PaymentStateError, status.HTTP_409_CONFLICT, "PAYMENT_STATE_CONFLICT"),
    (ConsistencyError, status.HTTP_500_INTERNAL_SERVER_ERROR, "CONSISTENCY_ERROR"),
    (PaymentIntegrityError, status.HTTP_500_INTERNAL_SERVER_ERROR, "PAYMENT_INTEGRITY_ERROR"),
    (AuthenticationError, status.HTTP_401_UNAUTHORIZED, "AUTHENTICATION_FAILED"),
    (SessionStoreError, status.HTTP_503_SERVICE_UNAVAILABLE, "SESSION_STORE_UNAVAILABLE"),
]

HANDLED_ROOTS: tuple[type[Exception], ...] = (
    PreconditionError,
    OrderServiceError,
    OrderRepositoryError,
    StateTransitionError,
    CatalogServiceError,
    CatalogRepositoryError,
    PaymentServiceError,
    PaymentRepositoryError,
    AuthenticationError,
    SessionStoreError,
)


def error_body(message: str, error_code: str, **extra: Any) -> dict[str, Any]:
    return {
        "success": False,
        "message": message,
        "error_code": error_code,
        "request_id": get_request_id() or None,
        **extra,
    }


def classify(exc: Exception) -> tuple[int, str]:
    for exc_type, status_code, error_code in ERROR_STATUS:
        if isinstance(exc, exc_type):
            return status_code, error_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR, "INTERNAL_ERROR"


async def service_error_handler(request: Request, exc: Exception) -> JSONResponse:
    status_code, error_code = classify(exc)
    message = getattr(exc, "message", None) or str(exc)
    extra: dict[str, Any] = {}

    if isinstance(exc, PreconditionError):
        error_code = exc.code.value.upper()
        extra["token_kind"] = exc.kind.value
    elif isinstance(exc, StateTransitionError):
        extra["current_status"] = exc.current_state.value
        extra["valid_transitions"] = [s.value for s in exc.allowed_transitions]

    if status_code >= 500:
        logger.error(
            "Request failed with server error",
            path=request.url.path,
            error_code=error_code,
            error=message,
            error_type=type(exc).__name__,
        )
        if error_code == "INTERNAL_ERROR":
            message = "An unexpected error occurred"
    else:
        logger.info(
            "Request rejected",
            path=request.url.path,
            status_code=status_code,
            error_code=error_code,
        )

    return JSONResponse(status_code=status_code, content=error_body(message, error_code, **extra))


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    logger.warning(
        "Request validation failed",
        method=request.method,
        path=request.url.path,
        error_count=len(exc.errors()),
    )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=error_body(
            "Request validation failed",
            "REQUEST_VALIDATION_ERROR",
            details=[
                {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
                for error in exc.errors()
            ],
        ),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unhandled exception",
        method=request.method,
        path=request.url.path,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body("An unexpected error occurred", "INTERNAL_ERROR"),
    )


def register_exception_handlers(app: FastAPI) -> None:
    for exc_type in HANDLED_ROOTS:
        app.add_exception_handler(exc_type, service_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
