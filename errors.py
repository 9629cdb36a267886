import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class StoreError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code


class ConfigurationError(StoreError):
    """Missing settings or provider credentials."""
    status_code = 500


class NotFoundError(StoreError):
    status_code = 404


class PricingError(StoreError):
    status_code = 400


class PaymentVerificationError(StoreError):
    status_code = 400


class InvalidTransitionError(StoreError):
    status_code = 409

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot change order status from '{current}' to '{target}'")
        self.current = current
        self.target = target


class UpstreamError(StoreError):
    """A payment provider or carrier call failed; `stage` names which one."""
    status_code = 500

    def __init__(self, stage: str, message: str):
        super().__init__(f"{stage} failed: {message}", detail=message)
        self.stage = stage


class ShipmentValidationError(StoreError):
    status_code = 400

    def __init__(self, message: str, missing_fields=None):
        super().__init__(message)
        self.missing_fields = list(missing_fields or [])


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(StoreError)
    async def handle_store_error(request: Request, exc: StoreError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"message": exc.message, "error": exc.detail or exc.__class__.__name__},
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        errors = [
            {"field": ".".join(str(p) for p in err.get("loc", ())[1:]), "message": err.get("msg")}
            for err in exc.errors()
        ]
        return JSONResponse(status_code=400, content={"message": "Invalid request data", "errors": errors})

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(status_code=500, content={"message": "Server error", "error": str(exc)[:200]})
