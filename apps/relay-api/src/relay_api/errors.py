"""Exception handlers rendering engine errors as {"error": {"code", "message"}}."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from messaging_engine.errors import MessagingError

logger = logging.getLogger(__name__)


async def messaging_error_handler(request: Request, exc: MessagingError) -> JSONResponse:
    logger.info(
        f"Request rejected: {exc.code}",
        extra={"path": request.url.path, "error_code": exc.code},
    )
    return JSONResponse(
        status_code=exc.http_status,
        content={"error": {"code": exc.code, "message": exc.message}},
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(MessagingError, messaging_error_handler)
