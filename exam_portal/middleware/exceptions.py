import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from mongoengine.errors import ValidationError as DocumentValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from exam_portal.utils.base import PortalError


logger = logging.getLogger(__name__)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "-")


async def portal_error_handler(request: Request, exc: PortalError):
    logger.warning("[%s] %s %s: %s", _request_id(request), type(exc).__name__, exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    logger.warning("[%s] HTTP %s: %s", _request_id(request), exc.status_code, message)
    return JSONResponse(status_code=exc.status_code, content={"message": message}, headers=exc.headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    # Malformed payloads share the 400 of other invalid input
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
        for err in exc.errors()
    ]
    logger.warning("[%s] Validation error: %s", _request_id(request), errors)
    return JSONResponse(status_code=400, content={"message": "Request validation failed", "errors": errors})


async def document_validation_handler(request: Request, exc: DocumentValidationError):
    logger.warning("[%s] Document validation error: %s", _request_id(request), exc)
    return JSONResponse(status_code=400, content={"message": str(exc)})


async def global_exception_handler(request: Request, exc: Exception):
    logger.error("[%s] Unhandled exception: %s", _request_id(request), exc, exc_info=True)
    return JSONResponse(status_code=500, content={"message": str(exc) or "An unexpected error occurred"})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PortalError, portal_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(DocumentValidationError, document_validation_handler)
    app.add_exception_handler(Exception, global_exception_handler)
