"""Error taxonomy for the order fulfillment sync subsystem."""
from typing import Optional


class OrderSyncError(Exception):
    """Base class for all errors raised by ordersync."""
    code = "error"


class OrderNotFoundError(OrderSyncError):
    code = "not_found"

    def __init__(self, order_id):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class InvalidTransitionError(OrderSyncError):
    """A precondition of the requested operation does not hold. Nothing was written."""
    code = "invalid_transition"


class ConcurrentModificationError(OrderSyncError):
    """The order row moved away from the expected status before the write."""
    code = "conflict"

    def __init__(self, order_id, expected_status):
        self.order_id = order_id
        self.expected_status = expected_status
        super().__init__(
            f"Order {order_id} is no longer in status '{expected_status}' or is being synced by another request"
        )


class ConfigurationError(OrderSyncError):
    code = "configuration_error"


class HelpshipAPIError(OrderSyncError):
    """Non-2xx answer from Helpship. Keeps the body text for diagnosis."""
    code = "wms_error"

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class ConversionAPIError(OrderSyncError):
    code = "conversion_error"

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class ValidationError(OrderSyncError):
    """Request data rejected before any state was read or written."""
    code = "invalid_request"
