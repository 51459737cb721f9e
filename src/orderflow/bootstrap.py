"""Process-start wiring: settings in, a ready workflow out.

Every collaborator is built here once and passed down explicitly.
"""

import structlog

from orderflow.collaborators import LoggingNotifier, OrderNotifier, StaticTokenResolver
from orderflow.config import Settings
from orderflow.gateway import GatewayRegistry
from orderflow.inventory.coordinator import InventoryCoordinator
from orderflow.inventory.ledger import InMemoryStockLedger, SqlStockLedger
from orderflow.payment.ledger import InMemoryPaymentLedger, SqlPaymentLedger
from orderflow.utils.db import ledger_engine
from orderflow.workflow.orchestrator import CheckoutWorkflow
from orderflow.workflow.pricing import PricingPolicy

logger = structlog.get_logger(__name__)


def build_workflow(
    settings: Settings,
    gateways: GatewayRegistry | None = None,
    notifier: OrderNotifier | None = None,
) -> CheckoutWorkflow:
    if settings.ledger_database_url:
        engine = ledger_engine(settings.ledger_database_url)
        stock, payments = SqlStockLedger(engine), SqlPaymentLedger(engine)
    else:
        stock, payments = InMemoryStockLedger(), InMemoryPaymentLedger()

    gateways = gateways or GatewayRegistry.from_settings(settings)
    logger.info(
        "workflow_built",
        environment=settings.environment,
        payment_methods=gateways.methods(),
        ledger="sql" if settings.ledger_database_url else "memory",
    )
    return CheckoutWorkflow(
        gateways=gateways,
        inventory=InventoryCoordinator(stock),
        payments=payments,
        notifier=notifier or LoggingNotifier(),
        pricing=PricingPolicy.from_settings(settings),
    )


def build_identity_resolver(settings: Settings) -> StaticTokenResolver:
    return StaticTokenResolver(settings.api_tokens)
