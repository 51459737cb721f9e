"""Map the orderflow error taxonomy to HTTP responses.

Protean's own exceptions (ValidationError, ObjectNotFoundError, ...) go
through ``protean.integrations.fastapi.register_exception_handlers``.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from protean.integrations.fastapi import register_exception_handlers

from orderflow.errors import GatewayError, OrderflowError

logger = structlog.get_logger(__name__)


async def orderflow_error_handler(request: Request, exc: OrderflowError) -> JSONResponse:
    if isinstance(exc, GatewayError):
        logger.warning("gateway_error_response", path=request.url.path, messages=exc.messages)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": type(exc).__name__, "messages": exc.messages},
    )


def install_error_handlers(app: FastAPI) -> None:
    register_exception_handlers(app)
    app.add_exception_handler(OrderflowError, orderflow_error_handler)
