"""
errors.py – Typed error taxonomy.
Each class carries the HTTP status the routes translate it to.
"""


class KopiError(Exception):
    """Base class for every error a command may report to its caller."""

    status_code = 500


class ValidationError(KopiError, ValueError):
    """Bad input, rejected before any persistence attempt."""

    status_code = 400


class EmptyOrder(ValidationError):
    def __init__(self) -> None:
        super().__init__("Order must contain at least one item")


class InvalidTransition(KopiError):
    """Illegal lifecycle move. Nothing was written."""

    status_code = 409

    def __init__(self, entity: str, current: str, target: str) -> None:
        self.entity  = entity
        self.current = current
        self.target  = target
        super().__init__(f"Cannot move {entity} from '{current}' to '{target}'")


class StaleTicket(KopiError):
    """Ticket move on an order that already left `pending`. Non-fatal."""

    status_code = 409

    def __init__(self, order_id: str, order_status: str) -> None:
        self.order_id     = order_id
        self.order_status = order_status
        super().__init__(f"Order {order_id} is {order_status}; ticket is no longer tracked")


class NotFound(KopiError):
    status_code = 404

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} id={entity_id} not found")


class RemoteUnavailable(KopiError):
    """The persistent store (or feed) could not be reached in time."""

    status_code = 503
