"""
Error taxonomy for the API.

Every business-rule violation is raised as one of the HTTPException subclasses
below and rendered by FastAPI as {"detail": ...}. Request body/query problems
are rendered as HTTP 400 with a field-level "errors" list.
"""
import logging
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ValidationError(HTTPException):
    def __init__(self, detail: str = "Validation failed", errors: Optional[List[dict]] = None):
        super().__init__(status_code=400, detail=detail)
        self.errors = errors or []


class EmptyCartError(ValidationError):
    def __init__(self, detail: str = "Cart is empty"):
        super().__init__(detail)


class InvalidTransitionError(ValidationError):
    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot change order status from '{current}' to '{requested}'")
        self.current = current
        self.requested = requested


class AuthError(HTTPException):
    def __init__(self, detail: str = "Authentication required"):
        super().__init__(status_code=401, detail=detail, headers={"WWW-Authenticate": "Bearer"})


class ForbiddenError(HTTPException):
    def __init__(self, detail: str = "Forbidden"):
        super().__init__(status_code=403, detail=detail)


class NotFoundError(HTTPException):
    def __init__(self, detail: str = "Not found"):
        super().__init__(status_code=404, detail=detail)


class ProductNotFoundError(NotFoundError):
    def __init__(self, product_id: str):
        super().__init__(f"Product not found: {product_id}")
        self.product_id = product_id


class ConflictError(HTTPException):
    def __init__(self, detail: str):
        super().__init__(status_code=400, detail=detail)


class ServerError(HTTPException):
    """Rendered as a generic 500; `reason` is only logged."""

    def __init__(self, reason: str = "Server error"):
        super().__init__(status_code=500, detail="Server error")
        self.reason = reason


class DatabaseUnavailable(ServerError):
    def __init__(self):
        super().__init__("Database not available")


def _field_errors(exc: RequestValidationError) -> List[dict]:
    errors = []
    for err in exc.errors():
        # drop the leading "body"/"query"/"path" segment
        loc = [str(part) for part in err.get("loc", ())][1:]
        errors.append({"field": ".".join(loc), "message": err.get("msg", "Invalid value")})
    return errors


async def _validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": "Validation failed", "errors": _field_errors(exc)})


async def _domain_validation_handler(request: Request, exc: ValidationError):
    content = {"detail": exc.detail}
    if exc.errors:
        content["errors"] = exc.errors
    return JSONResponse(status_code=exc.status_code, content=content)


async def _server_error_handler(request: Request, exc: ServerError):
    logger.error("Server error on %s %s: %s", request.method, request.url.path, exc.reason)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


async def _unhandled_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Server error"})


def register_error_handlers(app: FastAPI):
    app.add_exception_handler(RequestValidationError, _validation_handler)
    app.add_exception_handler(ValidationError, _domain_validation_handler)
    app.add_exception_handler(ServerError, _server_error_handler)
    app.add_exception_handler(Exception, _unhandled_handler)
