import logging

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.services.pdf_bytes import UnsupportedBinaryShape

logger = logging.getLogger(__name__)


def _error_payload(code: str, message: str, details):
    return {"code": code, "message": message, "details": details}


def register_error_handlers(app) -> None:
    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        detail = exc.detail
        code = f"http_{exc.status_code}"
        message = "Request failed"
        details = None
        if isinstance(detail, dict):
            code = detail.get("code", code)
            message = detail.get("message", message)
            details = detail.get("details")
        elif isinstance(detail, str):
            message = detail
        else:
            details = detail
        if exc.status_code >= 500:
            logger.error(
                "%s %s failed with %d: %s",
                request.method,
                request.url.path,
                exc.status_code,
                message,
            )
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_payload(code, message, details),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        # exc.errors() ctx may contain raw Exception objects (not JSON-serialisable).
        errors = [
            {k: str(v) if k == "ctx" else v for k, v in err.items()}
            for err in exc.errors(include_url=False)
        ]
        return JSONResponse(
            status_code=422,
            content=_error_payload("validation_error", "Validation error", errors),
        )

    @app.exception_handler(UnsupportedBinaryShape)
    async def binary_shape_handler(request: Request, exc: UnsupportedBinaryShape):
        logger.error("Unreadable stored payload on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=500,
            content=_error_payload("invalid_pdf_data", "Invalid PDF data format", str(exc)),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        # OSError messages carry file names; only the error text goes out
        if isinstance(exc, OSError) and exc.strerror:
            details = exc.strerror
        else:
            details = str(exc)
        return JSONResponse(
            status_code=500,
            content=_error_payload("internal_error", "Internal server error", details),
        )
