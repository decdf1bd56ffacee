"""
Orders Blueprint

Internal operations surface for the order lifecycle: confirm, cancel, uncancel,
hold, unhold, resync, finalize and promote, plus read access to orders and
their status history.
"""
from flask import Blueprint, current_app, request

from ordersync.logging_config import get_logger

logger = get_logger(__name__)

orders_bp = Blueprint("orders", __name__)


@orders_bp.before_request
def reap_expired_queue_orders_lazily():
    """Expired queue orders are finalized opportunistically on read traffic."""
    if request.method != "GET" or not current_app.config.get("QUEUE_REAPER_ON_REQUEST", True):
        return None

    from ordersync.services.queue_reaper import reap_expired_queue_orders
    from ordersync.models import db

    try:
        reap_expired_queue_orders()
    except Exception as e:
        db.session.rollback()
        logger.error("Lazy queue reaper failed", error=str(e), exc_info=True)
    return None


from ordersync.orders import routes
