"""
Tests for the conditional writes in OrderRepository: the status guard and the
sync claim.
"""
from datetime import timedelta

import pytest

from ordersync.datetime_utils import utcnow
from ordersync.exceptions import ConcurrentModificationError
from ordersync.models import Order, OrderStatus, OrderStatusChange, db
from ordersync.orders.repository import OrderRepository


def reload(order_id):
    db.session.expire_all()
    return db.session.get(Order, order_id)


def _move_behind_its_back(order_id, **values):
    """Simulate another request writing the row."""
    Order.query.filter_by(id=order_id).update(values, synchronize_session=False)
    db.session.commit()


class TestStatusGuard:

    def test_transition_fails_when_status_moved(self, make_order):
        order = make_order(status=OrderStatus.PENDING)
        _move_behind_its_back(order.id, status=OrderStatus.CANCELLED)

        with pytest.raises(ConcurrentModificationError):
            OrderRepository.transition(order, OrderStatus.PENDING, OrderStatus.HOLD, "hold")

        assert reload(order.id).status == OrderStatus.CANCELLED
        assert OrderStatusChange.query.count() == 0

    def test_concurrent_confirm_loses_to_cancel(self, state_machine, gateway, make_order):
        """Confirm read the order as pending but a cancel landed first."""
        order = make_order(status=OrderStatus.PENDING, helpship_order_id="HS-1")
        original_unhold = gateway.unhold

        def unhold_while_cancelled(helpship_order_id):
            _move_behind_its_back(order.id, status=OrderStatus.CANCELLED)
            return original_unhold(helpship_order_id)

        gateway.unhold = unhold_while_cancelled

        result = state_machine.confirm(order.id)

        assert result.success is False
        assert result.code == "conflict"
        assert reload(order.id).status == OrderStatus.CANCELLED


class TestSyncClaim:

    def test_live_claim_blocks_second_sync(self, make_order):
        order = make_order(status=OrderStatus.QUEUE)
        OrderRepository.claim_sync(order, OrderStatus.QUEUE)

        with pytest.raises(ConcurrentModificationError):
            OrderRepository.claim_sync(order, OrderStatus.QUEUE)

    def test_live_claim_blocks_other_transitions(self, state_machine, make_order):
        order = make_order(status=OrderStatus.QUEUE)
        OrderRepository.claim_sync(order, OrderStatus.QUEUE)

        result = state_machine.cancel(order.id)

        assert result.code == "conflict"
        assert reload(order.id).status == OrderStatus.QUEUE

    def test_stale_claim_can_be_taken_over(self, app, make_order):
        order = make_order(
            status=OrderStatus.QUEUE,
            sync_claim_id="abandoned",
            sync_claimed_at=utcnow() - timedelta(seconds=app.config["SYNC_CLAIM_TIMEOUT_SECONDS"] + 60),
        )

        claim_id = OrderRepository.claim_sync(order, OrderStatus.QUEUE)

        assert claim_id != "abandoned"
        assert reload(order.id).sync_claim_id == claim_id

    def test_finalize_runs_once_while_claimed(self, state_machine, gateway, make_order):
        order = make_order(status=OrderStatus.QUEUE, sync_claim_id="in-flight", sync_claimed_at=utcnow())

        result = state_machine.finalize(order.id)

        assert result.code == "conflict"
        assert gateway.calls == []

    def test_lost_claim_still_stores_wms_id(self, make_order):
        """A WMS order created after the claim was taken over is never orphaned."""
        order = make_order(status=OrderStatus.QUEUE)
        claim_id = OrderRepository.claim_sync(order, OrderStatus.QUEUE)
        _move_behind_its_back(order.id, sync_claim_id="someone-else")

        with pytest.raises(ConcurrentModificationError):
            OrderRepository.complete_sync(order, claim_id, OrderStatus.QUEUE, OrderStatus.PENDING, "HS-42", "finalize")

        order = reload(order.id)
        assert order.helpship_order_id == "HS-42"
        assert order.status == OrderStatus.QUEUE

    def test_lost_claim_does_not_overwrite_existing_wms_id(self, make_order):
        order = make_order(status=OrderStatus.QUEUE)
        claim_id = OrderRepository.claim_sync(order, OrderStatus.QUEUE)
        _move_behind_its_back(order.id, sync_claim_id=None, helpship_order_id="HS-FIRST")

        with pytest.raises(ConcurrentModificationError):
            OrderRepository.complete_sync(order, claim_id, OrderStatus.QUEUE, OrderStatus.PENDING, "HS-SECOND",
                                          "finalize")

        assert reload(order.id).helpship_order_id == "HS-FIRST"

    def test_claim_released_after_failed_sync(self, state_machine, gateway, make_order):
        order = make_order(status=OrderStatus.QUEUE)
        gateway.fail_sync_for(order.id)

        state_machine.finalize(order.id)

        order = reload(order.id)
        assert order.sync_claim_id is None
        assert order.sync_claimed_at is None

    def test_existing_wms_id_is_never_replaced(self, make_order):
        """Another request stored a WMS id while our claim was still live."""
        order = make_order(status=OrderStatus.QUEUE)
        claim_id = OrderRepository.claim_sync(order, OrderStatus.QUEUE)
        _move_behind_its_back(order.id, helpship_order_id="HS-FIRST")

        with pytest.raises(ConcurrentModificationError):
            OrderRepository.complete_sync(order, claim_id, OrderStatus.QUEUE, OrderStatus.PENDING, "HS-SECOND",
                                          "finalize")

        order = reload(order.id)
        assert order.helpship_order_id == "HS-FIRST"
        assert order.status == OrderStatus.QUEUE
        assert order.sync_claim_id is None
        assert OrderStatusChange.query.count() == 0

    def test_same_wms_id_completes(self, make_order):
        order = make_order(status=OrderStatus.QUEUE)
        claim_id = OrderRepository.claim_sync(order, OrderStatus.QUEUE)
        _move_behind_its_back(order.id, helpship_order_id="HS-42")

        OrderRepository.complete_sync(order, claim_id, OrderStatus.QUEUE, OrderStatus.PENDING, "HS-42", "finalize")

        order = reload(order.id)
        assert order.status == OrderStatus.PENDING
        assert order.helpship_order_id == "HS-42"

    def test_order_with_wms_id_cannot_be_claimed(self, make_order):
        order = make_order(status=OrderStatus.SYNC_ERROR, helpship_order_id="HS-1")

        with pytest.raises(ConcurrentModificationError):
            OrderRepository.claim_sync(order, OrderStatus.SYNC_ERROR)

        assert reload(order.id).sync_claim_id is None
