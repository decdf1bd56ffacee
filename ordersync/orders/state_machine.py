from decimal import Decimal, InvalidOperation
from functools import wraps
from typing import Dict, Optional

from ordersync.exceptions import InvalidTransitionError, OrderSyncError, ValidationError
from ordersync.helpship.results import SyncFailure, SyncSuccess
from ordersync.logging_config import get_logger
from ordersync.models import Order, OrderStatus, db
from ordersync.orders.repository import OrderRepository
from ordersync.orders.results import OperationResult

logger = get_logger(__name__)

S = OrderStatus

ALLOWED_TRANSITIONS: Dict[OrderStatus, frozenset] = {
    S.QUEUE: frozenset({S.PENDING, S.CANCELLED, S.HOLD, S.SYNC_ERROR}),
    S.TESTING: frozenset({S.PENDING, S.CANCELLED, S.HOLD, S.SYNC_ERROR}),
    S.PENDING: frozenset({S.CONFIRMED, S.CANCELLED, S.HOLD, S.SYNC_ERROR}),
    S.CONFIRMED: frozenset({S.CANCELLED, S.HOLD}),
    # hold only ever returns to its own hold_from_status
    S.HOLD: frozenset({S.QUEUE, S.TESTING, S.PENDING, S.CONFIRMED, S.CANCELLED}),
    S.CANCELLED: frozenset({S.QUEUE, S.TESTING, S.PENDING, S.CONFIRMED, S.SYNC_ERROR}),
    S.SYNC_ERROR: frozenset({S.PENDING, S.CANCELLED}),
}

HOLDABLE_STATUSES = frozenset({S.QUEUE, S.TESTING, S.PENDING, S.CONFIRMED})

CONFIRM_FIELDS = ("full_name", "phone", "county", "city", "address", "postal_code", "shipping_cost")
ADDRESS_FIELDS = ("full_name", "phone", "county", "city", "address", "postal_code")


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def _require_transition(order: Order, target: OrderStatus):
    if not can_transition(order.status, target):
        raise InvalidTransitionError(
            f"Cannot move order from '{order.status.value}' to '{target.value}'"
        )


def _confirm_fields(updated_fields: Optional[dict]) -> dict:
    """Whitelist and normalise the fields a confirm may overwrite."""
    fields = {}
    for key, value in (updated_fields or {}).items():
        if key not in CONFIRM_FIELDS or value is None:
            continue
        if key == "shipping_cost":
            try:
                value = Decimal(str(value))
            except (InvalidOperation, ValueError):
                raise ValidationError(f"Invalid shipping_cost '{value}'")
            if value < 0:
                raise ValidationError("shipping_cost cannot be negative")
        else:
            value = str(value).strip()
            if not value and key != "postal_code":
                raise ValidationError(f"{key} cannot be empty")
            value = value or None
        fields[key] = value
    return fields


def operation(func):
    """Turn domain errors raised by an operation into a failed OperationResult."""
    @wraps(func)
    def wrapper(self, order_id, *args, **kwargs):
        try:
            return func(self, order_id, *args, **kwargs)
        except OrderSyncError as e:
            logger.info(f"Order {func.__name__} rejected", order_id=order_id, code=e.code, error=str(e))
            return OperationResult.failed(order_id, e.code, str(e))
    return wrapper


class OrderStateMachine:
    """
    Applies order lifecycle operations.

    Transitions that need the WMS call the gateway and branch on its result;
    gateway failures never raise out of here. A failed sync parks the order in
    sync_error with the reason, from where ``resync`` retries it.

    Args:
        gateway: HelpshipGateway (defaults to the app-scoped one)
        conversions: ConversionService used after a queue finalize (defaults to a new one)
    """

    def __init__(self, gateway=None, conversions=None):
        if gateway is None:
            from ordersync.helpship.client import get_helpship_gateway
            gateway = get_helpship_gateway()
        if conversions is None:
            from ordersync.services.conversion_service import ConversionService
            conversions = ConversionService()
        self.gateway = gateway
        self.conversions = conversions

    # -------------------------
    # Sync path
    # -------------------------
    def _sync(self, order: Order, target: OrderStatus, trigger: str, hold: bool,
              fields: Optional[dict] = None) -> OperationResult:
        expected = order.status
        _require_transition(order, target)

        if order.helpship_order_id:
            # Already created remotely; never submit twice
            values = dict(fields or {})
            values["sync_last_error"] = None
            OrderRepository.transition(order, expected, target, trigger, fields=values)
            return OperationResult.ok(order, message="Order already exists in Helpship")

        claim_id = OrderRepository.claim_sync(order, expected, fields)

        outcome = self.gateway.sync_order(order, hold=hold)
        if isinstance(outcome, SyncSuccess):
            OrderRepository.complete_sync(order, claim_id, expected, target, outcome.helpship_order_id, trigger)
            return OperationResult.ok(order)

        OrderRepository.fail_sync(order, claim_id, expected, outcome.error, trigger)
        return OperationResult.failed(order.id, "sync_failed", outcome.error, order=order)

    def _send_conversion(self, order: Order):
        try:
            self.conversions.send_purchase(order)
        except Exception as e:
            logger.error("Meta Purchase event could not be sent or queued", order_id=order.id,
                         error=str(e), exc_info=True)

    # -------------------------
    # Operations
    # -------------------------
    @operation
    def finalize(self, order_id: str, trigger: str = "finalize") -> OperationResult:
        """Force a queue order to pending via the WMS, then send its Purchase event."""
        order = OrderRepository.get(order_id)
        if order.status == S.TESTING:
            return OperationResult.ok(order, message="Testing order is not synced to Helpship", skipped=True)
        if order.status != S.QUEUE:
            return OperationResult.ok(order, message="Order already finalized")

        result = self._sync(order, S.PENDING, trigger, hold=True)
        if result.success:
            self._send_conversion(order)
        return result

    @operation
    def promote(self, order_id: str) -> OperationResult:
        order = OrderRepository.get(order_id)
        if order.status != S.TESTING:
            raise InvalidTransitionError("Only testing orders can be promoted")
        return self._sync(order, S.PENDING, "promote", hold=True, fields={"promoted_from_testing": True})

    @operation
    def confirm(self, order_id: str, updated_fields: Optional[dict] = None) -> OperationResult:
        """
        Confirm a pending order, optionally correcting customer/address data.

        An order already in the WMS gets the corrected address (best effort) and
        its WMS hold released; the release must succeed. An order not yet in the
        WMS is created there without a hold, landing in sync_error on failure.
        """
        fields = _confirm_fields(updated_fields)
        order = OrderRepository.get(order_id)
        if order.status == S.CONFIRMED:
            raise InvalidTransitionError("Order already confirmed")
        if order.status != S.PENDING:
            raise InvalidTransitionError(f"Cannot confirm order in status '{order.status.value}'")

        if not order.helpship_order_id:
            return self._sync(order, S.CONFIRMED, "confirm", hold=False, fields=fields)

        if any(key in fields for key in ADDRESS_FIELDS):
            # Unflushed until the conditional update below; discarded if the unhold fails
            for key, value in fields.items():
                setattr(order, key, value)
            self.gateway.update_address(order)

        ack = self.gateway.unhold(order.helpship_order_id)
        if isinstance(ack, SyncFailure):
            db.session.rollback()
            return OperationResult.failed(order.id, "wms_error", f"Helpship unhold failed: {ack.error}", order=order)

        OrderRepository.transition(order, S.PENDING, S.CONFIRMED, "confirm", fields=fields)
        return OperationResult.ok(order)

    @operation
    def hold(self, order_id: str, note: Optional[str] = None) -> OperationResult:
        if note is not None and not isinstance(note, str):
            raise ValidationError("note must be a string")
        order = OrderRepository.get(order_id)
        current = order.status
        if current not in HOLDABLE_STATUSES:
            raise InvalidTransitionError(f"Cannot hold order in status '{current.value}'")

        if order.helpship_order_id:
            ack = self.gateway.hold(order.helpship_order_id)
            if isinstance(ack, SyncFailure):
                return OperationResult.failed(order.id, "wms_error", f"Helpship hold failed: {ack.error}", order=order)

        note = (note or "").strip() or None
        OrderRepository.transition(order, current, S.HOLD, "hold",
                                   fields={"hold_from_status": current, "order_note": note}, note=note)
        return OperationResult.ok(order)

    @operation
    def unhold(self, order_id: str) -> OperationResult:
        order = OrderRepository.get(order_id)
        if order.status != S.HOLD:
            raise InvalidTransitionError("Order is not on hold")
        restore_to = order.hold_from_status
        if restore_to is None:
            raise InvalidTransitionError("Held order has no recorded previous status")
        _require_transition(order, restore_to)

        OrderRepository.transition(order, S.HOLD, restore_to, "unhold",
                                   fields={"hold_from_status": None, "order_note": None})
        return OperationResult.ok(order)

    @operation
    def cancel(self, order_id: str) -> OperationResult:
        order = OrderRepository.get(order_id)
        current = order.status
        if current == S.CANCELLED:
            raise InvalidTransitionError("Order already cancelled")
        _require_transition(order, S.CANCELLED)
        # A held order remembers what it was held from, not "hold"
        previous = order.hold_from_status if current == S.HOLD else current

        if order.helpship_order_id:
            ack = self.gateway.cancel(order.helpship_order_id)
            if isinstance(ack, SyncFailure):
                return OperationResult.failed(order.id, "wms_error", f"Helpship cancel failed: {ack.error}", order=order)

        OrderRepository.transition(order, current, S.CANCELLED, "cancel",
                                   fields={"cancelled_from_status": previous, "hold_from_status": None})
        return OperationResult.ok(order)

    @operation
    def uncancel(self, order_id: str, restore_to: Optional[str] = None) -> OperationResult:
        order = OrderRepository.get(order_id)
        if order.status != S.CANCELLED:
            raise InvalidTransitionError("Order is not cancelled")

        if restore_to is not None and not isinstance(restore_to, str):
            raise ValidationError("restore_to must be a string")
        if restore_to:
            try:
                target = OrderStatus(restore_to)
            except ValueError:
                raise ValidationError(f"Unknown status '{restore_to}'")
        else:
            target = order.cancelled_from_status
        if target is None:
            raise InvalidTransitionError("Previous status is unknown; pass restore_to explicitly")
        if target in (S.HOLD, S.CANCELLED):
            raise InvalidTransitionError(f"Cannot restore a cancelled order to '{target.value}'")
        if target == S.SYNC_ERROR and target != order.cancelled_from_status:
            raise InvalidTransitionError("Only an order cancelled from 'sync_error' can return there")
        if order.helpship_order_id and target in (S.QUEUE, S.TESTING):
            raise InvalidTransitionError(
                f"Cannot restore to '{target.value}' an order that already exists in Helpship"
            )
        if not order.helpship_order_id and target in (S.PENDING, S.CONFIRMED):
            raise InvalidTransitionError(f"Cannot restore to '{target.value}' an order that was never synced")
        _require_transition(order, target)

        if order.helpship_order_id:
            ack = self.gateway.uncancel(order.helpship_order_id)
            if isinstance(ack, SyncFailure):
                return OperationResult.failed(order.id, "wms_error", f"Helpship uncancel failed: {ack.error}",
                                              order=order)

        OrderRepository.transition(order, S.CANCELLED, target, "uncancel", fields={"cancelled_from_status": None})
        return OperationResult.ok(order)

    @operation
    def resync(self, order_id: str) -> OperationResult:
        order = OrderRepository.get(order_id)
        if order.status != S.SYNC_ERROR:
            raise InvalidTransitionError("Order is not in sync_error")
        return self._sync(order, S.PENDING, "resync", hold=True)
