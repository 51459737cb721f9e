"""Orderflow FastAPI application.

Processes carts, checkout, payment confirmation and order administration
synchronously over HTTP. Every request runs inside the orderflow domain
context.

Usage:
    uvicorn orderflow.app:create_app --factory --host 0.0.0.0 --port 8000

PROTEAN_ENV picks the domain.toml overlay; everything else comes from
``Settings.from_env()``.
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from orderflow import __version__
from orderflow.api import cart_router, checkout_router, order_router, payment_router, product_router
from orderflow.api.errors import install_error_handlers
from orderflow.bootstrap import build_identity_resolver, build_workflow
from orderflow.collaborators import IdentityResolver
from orderflow.config import Settings
from orderflow.domain import orderflow
from orderflow.utils.db import setup_db
from orderflow.utils.logging import configure_logging
from orderflow.workflow.orchestrator import CheckoutWorkflow


def create_app(
    settings: Settings | None = None,
    workflow: CheckoutWorkflow | None = None,
    identity_resolver: IdentityResolver | None = None,
    init_domain: bool = True,
) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.environment)
    if init_domain:
        orderflow.init()
        setup_db(orderflow)

    app = FastAPI(
        title="Orderflow API",
        description="Order lifecycle and payment reconciliation",
        version=__version__,
    )
    app.state.settings = settings
    app.state.workflow = workflow or build_workflow(settings)
    app.state.identity_resolver = identity_resolver or build_identity_resolver(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def domain_context_middleware(request: Request, call_next):
        """Push the orderflow domain context for each request."""
        with orderflow.domain_context():
            response = await call_next(request)
        return response

    install_error_handlers(app)
    for router in (cart_router, checkout_router, order_router, payment_router, product_router):
        app.include_router(router)

    @app.get("/health")
    async def health():
        return JSONResponse(
            content={
                "status": "ok",
                "domain": orderflow.name,
                "version": __version__,
                "payment_methods": app.state.workflow.payment_methods(),
            }
        )

    return app
