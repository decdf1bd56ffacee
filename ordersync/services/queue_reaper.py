from datetime import datetime
from typing import Optional

from flask import current_app

from ordersync.datetime_utils import utcnow
from ordersync.logging_config import SyncContext, get_logger
from ordersync.models import Order, OrderStatus, db

logger = get_logger(__name__)


def find_expired_queue_orders(limit: int, now: Optional[datetime] = None):
    """Queue orders past their expiry, oldest first."""
    now = now or utcnow()
    return (
        Order.query.filter(
            Order.status == OrderStatus.QUEUE,
            Order.queue_expires_at.isnot(None),
            Order.queue_expires_at < now,
        )
        .order_by(Order.created_at.asc())
        .limit(limit)
        .all()
    )


def reap_expired_queue_orders(limit: Optional[int] = None, now: Optional[datetime] = None,
                              state_machine=None) -> dict:
    """
    Finalize expired queue orders through the regular finalize path.

    Orders are handled one at a time; a failed sync (order lands in
    sync_error) or an unexpected error on one order does not stop the batch.
    Whatever is left beyond ``limit`` is picked up by the next invocation.

    Returns:
        dict: {"processed": n, "finalized": n, "errors": n, "order_ids": [...]}
    """
    from ordersync.orders.state_machine import OrderStateMachine

    limit = limit or current_app.config.get("QUEUE_REAPER_BATCH_SIZE", 10)
    orders = find_expired_queue_orders(limit, now)
    if not orders:
        return {"processed": 0, "finalized": 0, "errors": 0, "order_ids": []}

    state_machine = state_machine or OrderStateMachine()
    order_ids = [order.id for order in orders]
    finalized = 0
    errors = 0

    with SyncContext("queue_reaper"):
        for order_id in order_ids:
            try:
                result = state_machine.finalize(order_id, trigger="reaper")
            except Exception as e:
                db.session.rollback()
                errors += 1
                logger.error(f"Unexpected error finalizing expired queue order {order_id}: {e}",
                             order_id=order_id, exc_info=True)
                continue
            if result.success:
                finalized += 1
            else:
                errors += 1
                logger.warning("Expired queue order not finalized", order_id=order_id,
                               code=result.code, error=result.error)

        logger.info("Expired queue orders processed", processed=len(order_ids), finalized=finalized, errors=errors)

    return {"processed": len(order_ids), "finalized": finalized, "errors": errors, "order_ids": order_ids}
