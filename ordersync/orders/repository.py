"""
Conditional writes for order rows.

Every status change is an UPDATE guarded by the status the caller read, so
two concurrent operations on one order cannot both apply. Syncing orders are
additionally guarded by a claim (``sync_claim_id``) taken and committed before
the WMS call; other operations are refused while a live claim exists.
"""
import uuid
from datetime import datetime, timedelta
from typing import Optional

from flask import current_app
from sqlalchemy import or_

from ordersync.datetime_utils import utcnow
from ordersync.exceptions import ConcurrentModificationError, OrderNotFoundError
from ordersync.logging_config import get_logger
from ordersync.models import Order, OrderStatus, OrderStatusChange, db

logger = get_logger(__name__)


def _claim_timeout() -> timedelta:
    return timedelta(seconds=current_app.config.get("SYNC_CLAIM_TIMEOUT_SECONDS", 120))


def _no_live_claim(now: datetime):
    return or_(Order.sync_claim_id.is_(None), Order.sync_claimed_at < now - _claim_timeout())


class OrderRepository:

    @staticmethod
    def get(order_id: str) -> Order:
        order = db.session.get(Order, order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    @staticmethod
    def _record_change(order_id: str, from_status: OrderStatus, to_status: OrderStatus, trigger: str,
                       note: Optional[str], now: datetime):
        if from_status == to_status:
            return
        db.session.add(OrderStatusChange(
            order_id=order_id,
            from_status=from_status.value,
            to_status=to_status.value,
            trigger=trigger,
            note=note,
            changed_at=now,
        ))

    @staticmethod
    def transition(order: Order, expected: OrderStatus, target: OrderStatus, trigger: str,
                   fields: Optional[dict] = None, note: Optional[str] = None) -> Order:
        """
        Move ``order`` from ``expected`` to ``target`` and commit.

        Raises:
            ConcurrentModificationError: the row is no longer in ``expected`` or is being synced
        """
        now = utcnow()
        values = dict(fields or {})
        values.update({
            "status": target,
            "sync_claim_id": None,
            "sync_claimed_at": None,
            "updated_at": now,
        })
        updated = Order.query.filter(
            Order.id == order.id,
            Order.status == expected,
            _no_live_claim(now),
        ).update(values, synchronize_session=False)
        if not updated:
            db.session.rollback()
            raise ConcurrentModificationError(order.id, expected.value)

        OrderRepository._record_change(order.id, expected, target, trigger, note, now)
        db.session.commit()
        db.session.refresh(order)
        logger.info("Order status changed", order_id=order.id, from_status=expected.value,
                    to_status=target.value, trigger=trigger)
        return order

    @staticmethod
    def claim_sync(order: Order, expected: OrderStatus, fields: Optional[dict] = None) -> str:
        """
        Take the sync claim for an order still in ``expected`` and commit it.

        Claims older than SYNC_CLAIM_TIMEOUT_SECONDS are considered abandoned
        and can be taken over. An order that already has a WMS id cannot be
        claimed. ``fields`` are written together with the claim.

        Returns:
            str: claim id to pass to complete_sync / fail_sync
        """
        now = utcnow()
        claim_id = str(uuid.uuid4())
        values = dict(fields or {})
        values.update({"sync_claim_id": claim_id, "sync_claimed_at": now, "updated_at": now})
        updated = Order.query.filter(
            Order.id == order.id,
            Order.status == expected,
            _no_live_claim(now),
            Order.helpship_order_id.is_(None),
        ).update(values, synchronize_session=False)
        if not updated:
            db.session.rollback()
            raise ConcurrentModificationError(order.id, expected.value)
        db.session.commit()
        db.session.refresh(order)
        return claim_id

    @staticmethod
    def complete_sync(order: Order, claim_id: str, expected: OrderStatus, target: OrderStatus,
                      helpship_order_id: str, trigger: str) -> Order:
        """
        Record a successful WMS creation and advance the order.

        A row that already carries a different WMS id is never overwritten.
        If the claim was lost in the meantime the WMS id is still stored on the
        row (when it has none) and our claim released before the conflict is
        raised, so the remote order is never orphaned.
        """
        now = utcnow()
        updated = Order.query.filter(
            Order.id == order.id,
            Order.status == expected,
            Order.sync_claim_id == claim_id,
            or_(Order.helpship_order_id.is_(None), Order.helpship_order_id == helpship_order_id),
        ).update({
            "status": target,
            "helpship_order_id": helpship_order_id,
            "last_synced_at": now,
            "sync_last_error": None,
            "sync_claim_id": None,
            "sync_claimed_at": None,
            "updated_at": now,
        }, synchronize_session=False)
        if not updated:
            db.session.rollback()
            Order.query.filter(
                Order.id == order.id,
                Order.helpship_order_id.is_(None),
            ).update({"helpship_order_id": helpship_order_id, "last_synced_at": now}, synchronize_session=False)
            Order.query.filter(
                Order.id == order.id,
                Order.sync_claim_id == claim_id,
            ).update({"sync_claim_id": None, "sync_claimed_at": None, "updated_at": now}, synchronize_session=False)
            db.session.commit()
            stored = db.session.query(Order.helpship_order_id).filter(Order.id == order.id).scalar()
            logger.error("Order changed while its WMS order was being created", order_id=order.id,
                         helpship_order_id=helpship_order_id, stored_helpship_order_id=stored)
            raise ConcurrentModificationError(order.id, expected.value)

        OrderRepository._record_change(order.id, expected, target, trigger, None, now)
        db.session.commit()
        db.session.refresh(order)
        logger.info("Order synced", order_id=order.id, helpship_order_id=helpship_order_id,
                    to_status=target.value, trigger=trigger)
        return order

    @staticmethod
    def fail_sync(order: Order, claim_id: str, expected: OrderStatus, error: str, trigger: str) -> Order:
        """Park the order in sync_error with the failure reason and release the claim."""
        now = utcnow()
        updated = Order.query.filter(
            Order.id == order.id,
            Order.status == expected,
            Order.sync_claim_id == claim_id,
        ).update({
            "status": OrderStatus.SYNC_ERROR,
            "sync_last_error": error,
            "sync_claim_id": None,
            "sync_claimed_at": None,
            "updated_at": now,
        }, synchronize_session=False)
        if not updated:
            db.session.rollback()
            raise ConcurrentModificationError(order.id, expected.value)

        OrderRepository._record_change(order.id, expected, OrderStatus.SYNC_ERROR, trigger, error, now)
        db.session.commit()
        db.session.refresh(order)
        logger.warning("Order sync failed", order_id=order.id, error=error, trigger=trigger)
        return order
