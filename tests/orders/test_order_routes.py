"""
Tests for the orders Blueprint.
The Helpship gateway is replaced by the fake from conftest, so these tests only
check the HTTP mapping of operation results.
"""
from datetime import timedelta

import pytest

from ordersync.datetime_utils import utcnow
from ordersync.models import Order, OrderStatus, db


# ==============================================================================
# Read endpoints
# ==============================================================================

class TestReadEndpoints:

    def test_get_order(self, client, make_order):
        order = make_order(status=OrderStatus.PENDING, helpship_order_id="HS-1")

        response = client.get(f"/api/orders/{order.id}")

        assert response.status_code == 200
        data = response.get_json()
        assert data["id"] == order.id
        assert data["status"] == "pending"
        assert data["helpship_order_id"] == "HS-1"

    def test_get_missing_order(self, client):
        response = client.get("/api/orders/does-not-exist")

        assert response.status_code == 404
        assert response.get_json()["code"] == "not_found"

    def test_list_orders_filters_by_status(self, client, make_order):
        make_order(status=OrderStatus.PENDING)
        make_order(status=OrderStatus.QUEUE)
        make_order(status=OrderStatus.QUEUE)

        response = client.get("/api/orders?status=queue")

        assert response.status_code == 200
        data = response.get_json()
        assert data["total_count"] == 2
        assert {o["status"] for o in data["orders"]} == {"queue"}

    def test_list_orders_rejects_unknown_status(self, client):
        response = client.get("/api/orders?status=shipped")

        assert response.status_code == 400

    def test_history_lists_applied_transitions(self, client, gateway, make_order):
        order = make_order(status=OrderStatus.PENDING)
        client.post(f"/api/orders/{order.id}/hold", json={"note": "call back"})
        client.post(f"/api/orders/{order.id}/unhold")

        response = client.get(f"/api/orders/{order.id}/history")

        changes = response.get_json()["changes"]
        assert [(c["from_status"], c["to_status"]) for c in changes] == [("pending", "hold"), ("hold", "pending")]
        assert changes[0]["note"] == "call back"


# ==============================================================================
# Operations
# ==============================================================================

class TestOperationEndpoints:

    def test_confirm_returns_updated_order(self, client, gateway, make_order):
        order = make_order(status=OrderStatus.PENDING, helpship_order_id="HS-1")

        response = client.post(f"/api/orders/{order.id}/confirm", json={"city": "Turda"})

        assert response.status_code == 200
        data = response.get_json()
        assert data["success"] is True
        assert data["status"] == "confirmed"

    def test_confirm_without_body(self, client, gateway, make_order):
        order = make_order(status=OrderStatus.PENDING, helpship_order_id="HS-1")

        response = client.post(f"/api/orders/{order.id}/confirm")

        assert response.status_code == 200

    def test_invalid_transition_is_400(self, client, gateway, make_order):
        order = make_order(status=OrderStatus.QUEUE)

        response = client.post(f"/api/orders/{order.id}/unhold")

        assert response.status_code == 400
        data = response.get_json()
        assert data["success"] is False
        assert data["code"] == "invalid_transition"

    def test_unknown_order_is_404(self, client, gateway):
        response = client.post("/api/orders/missing/cancel")

        assert response.status_code == 404

    def test_sync_failure_is_502(self, client, gateway, make_order):
        order = make_order(status=OrderStatus.SYNC_ERROR)
        gateway.fail_sync_for(order.id, "Helpship API error: 500 boom")

        response = client.post(f"/api/orders/{order.id}/resync")

        assert response.status_code == 502
        data = response.get_json()
        assert data["code"] == "sync_failed"
        assert data["status"] == "sync_error"
        assert data["error"] == "Helpship API error: 500 boom"

    def test_wms_rejection_is_502(self, client, gateway, make_order):
        order = make_order(status=OrderStatus.CONFIRMED, helpship_order_id="HS-1")
        gateway.failing_actions.add("cancel")

        response = client.post(f"/api/orders/{order.id}/cancel")

        assert response.status_code == 502
        assert response.get_json()["code"] == "wms_error"

    def test_live_sync_claim_is_409(self, client, gateway, make_order):
        order = make_order(status=OrderStatus.PENDING, sync_claim_id="other-request", sync_claimed_at=utcnow())

        response = client.post(f"/api/orders/{order.id}/cancel")

        assert response.status_code == 409
        assert response.get_json()["code"] == "conflict"

    def test_uncancel_with_restore_to(self, client, gateway, make_order):
        order = make_order(status=OrderStatus.CANCELLED)

        response = client.post(f"/api/orders/{order.id}/uncancel", json={"restore_to": "queue"})

        assert response.status_code == 200
        assert response.get_json()["status"] == "queue"

    def test_uncancel_to_pending_without_wms_id_is_400(self, client, gateway, make_order):
        order = make_order(status=OrderStatus.CANCELLED, cancelled_from_status=OrderStatus.QUEUE)

        response = client.post(f"/api/orders/{order.id}/uncancel", json={"restore_to": "pending"})

        assert response.status_code == 400
        assert response.get_json()["code"] == "invalid_transition"

    def test_hold_with_non_string_note_is_400(self, client, gateway, make_order):
        order = make_order(status=OrderStatus.PENDING)

        response = client.post(f"/api/orders/{order.id}/hold", json={"note": 5})

        assert response.status_code == 400
        assert response.get_json()["code"] == "invalid_request"

    @pytest.mark.parametrize("operation", ["uncancel", "hold", "confirm"])
    def test_json_array_body_is_400(self, client, gateway, make_order, operation):
        order = make_order(status=OrderStatus.CANCELLED, cancelled_from_status=OrderStatus.QUEUE)

        response = client.post(f"/api/orders/{order.id}/{operation}", json=["queue"])

        assert response.status_code == 400
        data = response.get_json()
        assert data["code"] == "invalid_request"
        assert data["order_id"] == order.id
        assert gateway.calls == []

    def test_finalize_endpoint(self, client, gateway, make_order):
        order = make_order(status=OrderStatus.QUEUE, queue_expires_at=utcnow() + timedelta(minutes=5))

        response = client.post(f"/api/orders/{order.id}/finalize")

        assert response.status_code == 200
        db.session.expire_all()
        assert db.session.get(Order, order.id).status == OrderStatus.PENDING

    def test_promote_endpoint(self, client, gateway, make_order):
        order = make_order(status=OrderStatus.TESTING)

        response = client.post(f"/api/orders/{order.id}/promote")

        assert response.status_code == 200
        assert response.get_json()["status"] == "pending"


# ==============================================================================
# Lazy queue reaper
# ==============================================================================

class TestLazyReaper:

    def test_get_request_finalizes_expired_queue_orders(self, app, client, gateway, make_order):
        app.config["QUEUE_REAPER_ON_REQUEST"] = True
        expired = make_order(status=OrderStatus.QUEUE, queue_expires_at=utcnow() - timedelta(minutes=3))

        response = client.get(f"/api/orders/{expired.id}")

        assert response.status_code == 200
        assert response.get_json()["status"] == "pending"

    def test_post_request_does_not_reap(self, app, client, gateway, make_order):
        app.config["QUEUE_REAPER_ON_REQUEST"] = True
        expired = make_order(status=OrderStatus.QUEUE, queue_expires_at=utcnow() - timedelta(minutes=3))
        other = make_order(status=OrderStatus.PENDING)

        client.post(f"/api/orders/{other.id}/hold")

        db.session.expire_all()
        assert db.session.get(Order, expired.id).status == OrderStatus.QUEUE
