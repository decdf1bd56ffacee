"""
Order operation route handlers for the orders Blueprint.
"""
from flask import jsonify, request

from ordersync.exceptions import ValidationError
from ordersync.logging_config import get_logger
from ordersync.models import Order, OrderStatus, OrderStatusChange, db
from ordersync.orders import orders_bp
from ordersync.orders.results import OperationResult
from ordersync.orders.state_machine import OrderStateMachine

logger = get_logger(__name__)

STATUS_CODES = {
    "not_found": 404,
    "invalid_transition": 400,
    "invalid_request": 400,
    "conflict": 409,
    "sync_failed": 502,
    "wms_error": 502,
}


def _respond(result):
    status_code = 200 if result.success else STATUS_CODES.get(result.code, 500)
    return jsonify(result.to_dict()), status_code


def _run(operation_name, order_id, *args):
    """Run a state machine operation and map its result to an HTTP response."""
    try:
        machine = OrderStateMachine()
        result = getattr(machine, operation_name)(order_id, *args)
        return _respond(result)
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error in order {operation_name}", order_id=order_id, error=str(e), exc_info=True)
        return jsonify({"error": str(e)}), 500


def _json_body():
    body = request.get_json(silent=True)
    if body is None:
        return {}
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


@orders_bp.errorhandler(ValidationError)
def handle_validation_error(e):
    order_id = (request.view_args or {}).get("order_id")
    return _respond(OperationResult.failed(order_id, e.code, str(e)))


# ==============================================================================
# Read endpoints
# ==============================================================================

@orders_bp.route("", methods=["GET"])
def list_orders():
    """
    List orders, newest first.

    Query params:
        status: optional status filter
        limit: max rows (default 50, capped at 200)
    """
    status = request.args.get("status")
    try:
        limit = min(int(request.args.get("limit", 50)), 200)
    except ValueError:
        return jsonify({"error": "limit must be an integer"}), 400

    query = Order.query
    if status:
        try:
            query = query.filter(Order.status == OrderStatus(status))
        except ValueError:
            return jsonify({"error": f"Unknown status '{status}'"}), 400

    orders = query.order_by(Order.created_at.desc()).limit(limit).all()
    return jsonify({
        "orders": [order.to_dict() for order in orders],
        "total_count": len(orders),
    }), 200


@orders_bp.route("/<order_id>", methods=["GET"])
def get_order(order_id):
    order = db.session.get(Order, order_id)
    if order is None:
        return jsonify({"error": f"Order {order_id} not found", "code": "not_found"}), 404
    return jsonify(order.to_dict()), 200


@orders_bp.route("/<order_id>/history", methods=["GET"])
def get_order_history(order_id):
    changes = (
        OrderStatusChange.query.filter_by(order_id=order_id)
        .order_by(OrderStatusChange.changed_at.asc(), OrderStatusChange.id.asc())
        .all()
    )
    return jsonify({
        "order_id": order_id,
        "changes": [
            {
                "from_status": change.from_status,
                "to_status": change.to_status,
                "trigger": change.trigger,
                "note": change.note,
                "changed_at": change.changed_at.isoformat() if change.changed_at else None,
            }
            for change in changes
        ],
    }), 200


# ==============================================================================
# Operations
# ==============================================================================

@orders_bp.route("/<order_id>/confirm", methods=["POST"])
def confirm_order(order_id):
    """
    Confirm a pending order.

    Body (all optional): full_name, phone, county, city, address, postal_code, shipping_cost
    """
    return _run("confirm", order_id, _json_body())


@orders_bp.route("/<order_id>/cancel", methods=["POST"])
def cancel_order(order_id):
    return _run("cancel", order_id)


@orders_bp.route("/<order_id>/uncancel", methods=["POST"])
def uncancel_order(order_id):
    """Body (optional): {"restore_to": "<status>"}; defaults to the status recorded at cancel."""
    return _run("uncancel", order_id, _json_body().get("restore_to"))


@orders_bp.route("/<order_id>/hold", methods=["POST"])
def hold_order(order_id):
    """Body (optional): {"note": "..."}"""
    return _run("hold", order_id, _json_body().get("note"))


@orders_bp.route("/<order_id>/unhold", methods=["POST"])
def unhold_order(order_id):
    return _run("unhold", order_id)


@orders_bp.route("/<order_id>/resync", methods=["POST"])
def resync_order(order_id):
    return _run("resync", order_id)


@orders_bp.route("/<order_id>/finalize", methods=["POST"])
def finalize_order(order_id):
    return _run("finalize", order_id)


@orders_bp.route("/<order_id>/promote", methods=["POST"])
def promote_order(order_id):
    return _run("promote", order_id)
