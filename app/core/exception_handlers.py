from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.shared.exceptions import RoomsError
from app.shared.utils.logger import get_logger

logger = get_logger(__name__)

STATUS_BY_KIND = {
    "validation": 422,
    "forbidden": 403,
    "not_found": 404,
    "conflict": 409,
    "invariant": 500,
    "unavailable": 503,
}


def setup_exception_handlers(app: FastAPI):
    @app.exception_handler(RoomsError)
    async def rooms_error_handler(request, exc: RoomsError):
        status_code = STATUS_BY_KIND.get(exc.kind, 400)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.kind}/{exc.code}: {exc.message}")
        return JSONResponse(
            status_code=status_code,
            content={"detail": exc.message, "error": exc.to_dict()},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request, exc):
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request, exc):
        return JSONResponse(
            status_code=422,
            content={"detail": exc.errors()},
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request, exc):
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc!r}")
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )
