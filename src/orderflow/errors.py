"""Error taxonomy for the checkout and reconciliation engine.

Every error carries the HTTP status it maps to and a ``messages`` dict
shaped like ``protean.exceptions.ValidationError.messages`` so the API
layer can render all of them the same way.
"""


class OrderflowError(Exception):
    status_code = 500
    default_field = "_entity"

    def __init__(self, messages: dict | str | None = None):
        if messages is None:
            messages = self.__class__.__name__
        if isinstance(messages, str):
            messages = {self.default_field: [messages]}
        self.messages = messages
        super().__init__(messages)


class CartInvalid(OrderflowError):
    """Staging found blocking problems (stock shortfalls) in the cart."""

    status_code = 400
    default_field = "cart"

    def __init__(self, report):
        self.report = report
        super().__init__({"cart": list(report.errors) or ["Cart is not valid for checkout"]})


class InvalidTransition(OrderflowError):
    status_code = 400
    default_field = "status"

    def __init__(self, current: str, requested: str, machine: str = "order"):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot transition {machine} from '{current}' to '{requested}'")


class InvalidRefund(OrderflowError):
    status_code = 400
    default_field = "refund"


class InsufficientStock(OrderflowError):
    status_code = 409
    default_field = "stock"

    def __init__(self, product_id: str, variant_key: str | None, requested: int, available: int):
        self.product_id = product_id
        self.variant_key = variant_key
        self.requested = requested
        self.available = available
        label = f"{product_id}/{variant_key}" if variant_key else product_id
        super().__init__(f"Insufficient stock for {label}: requested {requested}, available {available}")


class Unauthorized(OrderflowError):
    status_code = 401
    default_field = "authorization"


class Forbidden(OrderflowError):
    status_code = 403
    default_field = "authorization"


class NotFound(OrderflowError):
    status_code = 404


class Conflict(OrderflowError):
    status_code = 409


class GatewayError(OrderflowError):
    """Upstream provider failure. Retryable by the client."""

    status_code = 502
    default_field = "gateway"


class GatewayUnavailable(GatewayError):
    """Provider unreachable, timed out or not configured."""
