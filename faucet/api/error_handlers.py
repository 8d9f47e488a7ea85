"""Global exception handlers.

FaucetError subclasses carry their own status and public message; request
body validation errors collapse to a generic 400; anything else is a generic
500. Internal detail goes to the log only.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from faucet.domain.errors import FaucetError, ValidationError

logger = logging.getLogger(__name__)


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(FaucetError)
    async def faucet_error_handler(request: Request, exc: FaucetError):
        log = logger.warning if exc.http_status < 500 else logger.error
        log(
            f"{exc.code}: {exc.detail or exc.message}",
            extra={"path": request.url.path},
        )
        return JSONResponse(status_code=exc.http_status, content=exc.to_response())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.warning(f"validation error on {request.url.path}: {exc.errors()}")
        err = ValidationError()
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=err.to_response())

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception):
        logger.error(f"unhandled exception on {request.url.path}: {exc}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal faucet error", "code": "INTERNAL_ERROR"},
        )
