from functools import wraps

from flask import current_app, jsonify, request

from ordersync.cron import cron_bp
from ordersync.logging_config import get_logger
from ordersync.models import db
from ordersync.services.outbox_service import OutboxService
from ordersync.services.queue_reaper import reap_expired_queue_orders

logger = get_logger(__name__)


def cron_secret_required(func):
    """Require "Authorization: Bearer <CRON_SECRET>" when CRON_SECRET is set."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        secret = current_app.config.get("CRON_SECRET")
        if secret and request.headers.get("Authorization") != f"Bearer {secret}":
            logger.warning("Unauthorized cron request", path=request.path)
            return jsonify({"error": "Unauthorized"}), 401
        return func(*args, **kwargs)
    return wrapper


@cron_bp.route("/finalize-expired-queue", methods=["GET", "POST"])
@cron_secret_required
def finalize_expired_queue():
    try:
        result = reap_expired_queue_orders()
        return jsonify({"success": True, **result}), 200
    except Exception as e:
        db.session.rollback()
        logger.error("Error in /cron/finalize-expired-queue", error=str(e), exc_info=True)
        return jsonify({"error": str(e)}), 500


@cron_bp.route("/retry-outbox", methods=["GET", "POST"])
@cron_secret_required
def retry_outbox():
    try:
        result = OutboxService.process_pending_items()
        return jsonify({"success": True, **result}), 200
    except Exception as e:
        db.session.rollback()
        logger.error("Error in /cron/retry-outbox", error=str(e), exc_info=True)
        return jsonify({"error": str(e)}), 500


@cron_bp.route("/outbox-stats", methods=["GET"])
@cron_secret_required
def outbox_stats():
    return jsonify(OutboxService.get_stats()), 200
