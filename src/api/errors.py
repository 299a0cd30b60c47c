"""Exception handlers mapping recognition errors to HTTP responses."""

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from src.identity.errors import DependencyUnavailableError, RecognitionError

logger = structlog.get_logger()


async def recognition_error_handler(request: Request, exc: RecognitionError) -> JSONResponse:
    """Render a RecognitionError as {"detail": message} with its status code."""
    if isinstance(exc, DependencyUnavailableError):
        logger.warning("dependency unavailable", path=request.url.path, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RecognitionError, recognition_error_handler)
