"""
Order lifecycle: placement, per-viewer pricing, cancellation, rejection,
carrier sync.
"""

from unittest.mock import patch

import pytest

from freightdesk.extensions import db
from freightdesk.models import BalanceTransaction, Order
from freightdesk.services import order_service
from freightdesk.services.carrier_client import CancelResult
from freightdesk.services.errors import (
    ExternalApiError,
    InvalidInput,
    InvalidOrderState,
    NoSupervisorFound,
    OrderNotFound,
    PermissionDenied,
)
from freightdesk.services.identity_service import identity_from_user
from freightdesk.services.results import STATUS_ALREADY_REFUNDED, STATUS_COMPLETED, STATUS_SKIPPED, LedgerResult

from conftest import place


def _ledger(order_id, tx_type):
    return (
        BalanceTransaction.query
        .filter_by(order_id=order_id, transaction_type=tx_type)
        .order_by(BalanceTransaction.id)
        .all()
    )


class TestPlaceOrder:
    def test_order_and_pair_written_together(self, placed_order, admin_user):
        customer_row, supervisor_row = _ledger(placed_order.id, "debit")

        assert placed_order.amount == 120.00
        assert placed_order.status == "pending_review"
        assert customer_row.amount == -120.00
        assert supervisor_row.amount == -100.00
        assert supervisor_row.user_id == admin_user.id
        assert customer_row.order_id == supervisor_row.order_id == placed_order.id
        assert placed_order.status_history[0]["event"] == "order_placed"

    def test_no_supervisor_books_nothing(self, customer_identity, carrier):
        result = order_service.place_order(customer_identity, {"totalCharge": 120, "orderId": "O9"}, carrier=carrier)

        assert isinstance(result.error, NoSupervisorFound)
        assert Order.query.count() == 0
        assert BalanceTransaction.query.count() == 0
        assert carrier.placed == []

    def test_carrier_order_id_is_stored(self, admin_user, customer_identity, carrier):
        result = order_service.place_order(customer_identity, {"totalCharge": 60, "orderId": "O2"}, carrier=carrier)

        assert result.ok
        assert result.data["order"].carrier_order_id == "C-O2"

    def test_duplicate_order_number_rejected(self, placed_order, customer_identity):
        result = order_service.place_order(customer_identity, {"totalCharge": 120, "orderId": "O1"})

        assert isinstance(result.error, InvalidInput)
        assert len(_ledger(placed_order.id, "debit")) == 2

    @pytest.mark.parametrize("charge", [0, -10, "abc", None])
    def test_invalid_total_charge(self, admin_user, customer_identity, charge):
        result = order_service.place_order(customer_identity, {"totalCharge": charge, "orderId": "O3"})
        assert isinstance(result.error, InvalidInput)

    def test_invalid_service_type(self, admin_user, customer_identity):
        result = order_service.place_order(customer_identity, {"totalCharge": 10, "orderId": "O4"}, {"service_type": "AIR"})
        assert isinstance(result.error, InvalidInput)


class TestOrderView:
    def test_admin_sees_base_price(self, placed_order, admin_identity):
        view = order_service.order_view(admin_identity, placed_order.id)
        assert view["amount"] == 100.00
        assert view["customer_amount"] == 120.00

    def test_customer_sees_stored_price(self, placed_order, customer_identity):
        view = order_service.order_view(customer_identity, placed_order.id)
        assert view["amount"] == 120.00
        assert "customer_amount" not in view

    def test_other_customer_cannot_see_order(self, placed_order, other_customer):
        with pytest.raises(OrderNotFound):
            order_service.order_view(identity_from_user(other_customer), placed_order.id)

    def test_list_orders_is_scoped(self, placed_order, other_customer, admin_identity):
        place(identity_from_user(other_customer), 55.0, "O5")

        mine, total = order_service.list_orders(identity_from_user(other_customer))
        everything, all_total = order_service.list_orders(admin_identity)

        assert total == 1 and mine[0]["order_number"] == "O5"
        assert all_total == 2


class TestCancelOrder:
    def test_cancel_refunds_the_pair(self, placed_order, customer_identity, carrier):
        outcome = order_service.cancel_order(customer_identity, placed_order.id, "Changed plans", carrier=carrier)

        assert outcome.ok
        assert outcome.refund.ok
        assert outcome.refund.status == STATUS_COMPLETED
        assert carrier.cancelled == [("O1", "Changed plans")]
        assert placed_order.status == "cancelled"
        assert placed_order.carrier_status == "Cancelled"
        assert placed_order.audit_remark == "Cancelled by customer request"
        assert [row.amount for row in _ledger(placed_order.id, "refund")] == [120.00, 100.00]

    def test_second_cancel_is_a_no_op(self, placed_order, customer_identity, carrier):
        order_service.cancel_order(customer_identity, placed_order.id, carrier=carrier)
        second = order_service.cancel_order(customer_identity, placed_order.id, carrier=carrier)

        assert second.ok
        assert second.cancellation.status == STATUS_SKIPPED
        assert second.refund.status == STATUS_ALREADY_REFUNDED
        assert len(carrier.cancelled) == 1
        assert len(_ledger(placed_order.id, "refund")) == 2

    def test_only_pending_review_can_be_cancelled(self, placed_order, customer_identity, carrier):
        placed_order.status = "in_transit"
        db.session.commit()

        outcome = order_service.cancel_order(customer_identity, placed_order.id, carrier=carrier)

        assert not outcome.ok
        assert isinstance(outcome.cancellation.error, InvalidOrderState)
        assert outcome.refund is None
        assert carrier.cancelled == []

    def test_carrier_refusal_changes_nothing(self, placed_order, customer_identity, carrier):
        carrier.cancel_result = CancelResult(ok=False, message="Order already dispatched")

        outcome = order_service.cancel_order(customer_identity, placed_order.id, carrier=carrier)

        assert not outcome.ok
        assert outcome.cancellation.error.message == "Order already dispatched"
        assert placed_order.status == "pending_review"
        assert _ledger(placed_order.id, "refund") == []

    def test_carrier_unreachable(self, placed_order, customer_identity, carrier):
        carrier.cancel_error = ExternalApiError("Carrier API unreachable")

        outcome = order_service.cancel_order(customer_identity, placed_order.id, carrier=carrier)

        assert isinstance(outcome.cancellation.error, ExternalApiError)

    def test_refund_failure_does_not_undo_cancellation(self, placed_order, customer_identity, carrier, caplog):
        failed = LedgerResult.failure(ExternalApiError("ledger down"))
        with patch.object(order_service, "refund_order", return_value=failed):
            outcome = order_service.cancel_order(customer_identity, placed_order.id, carrier=carrier)

        assert outcome.ok
        assert not outcome.refund.ok
        assert placed_order.status == "cancelled"
        assert "manual reconciliation required" in caplog.text

    def test_other_customer_cannot_cancel(self, placed_order, other_customer, carrier):
        outcome = order_service.cancel_order(identity_from_user(other_customer), placed_order.id, carrier=carrier)
        assert isinstance(outcome.cancellation.error, OrderNotFound)


class TestRejectAndRefund:
    def test_admin_reject_refunds(self, placed_order, admin_identity):
        outcome = order_service.reject_order(admin_identity, placed_order.id, "Hazmat not allowed")

        assert outcome.ok
        assert outcome.refund.status == STATUS_COMPLETED
        assert placed_order.status == "rejected"
        assert placed_order.audit_remark == "Hazmat not allowed"

    def test_customer_cannot_reject(self, placed_order, customer_identity):
        outcome = order_service.reject_order(customer_identity, placed_order.id, "no")
        assert isinstance(outcome.cancellation.error, PermissionDenied)

    def test_reject_requires_reason(self, placed_order, admin_identity):
        outcome = order_service.reject_order(admin_identity, placed_order.id, "")
        assert isinstance(outcome.cancellation.error, InvalidInput)

    def test_delivered_cannot_be_rejected(self, placed_order, admin_identity):
        placed_order.status = "delivered"
        db.session.commit()

        outcome = order_service.reject_order(admin_identity, placed_order.id, "late")

        assert isinstance(outcome.cancellation.error, InvalidOrderState)

    def test_request_refund_requires_refundable_status(self, placed_order, customer_identity):
        result = order_service.request_refund(customer_identity, placed_order.id)
        assert isinstance(result.error, InvalidOrderState)

    def test_request_refund_on_exception_order(self, placed_order, customer_identity):
        placed_order.status = "exception"
        db.session.commit()

        first = order_service.request_refund(customer_identity, placed_order.id)
        second = order_service.request_refund(customer_identity, placed_order.id)

        assert first.status == STATUS_COMPLETED
        assert second.status == STATUS_ALREADY_REFUNDED


class TestSyncOrder:
    def test_status_and_tracking_are_updated(self, placed_order, customer_identity, carrier):
        carrier.info = {"orderStatus": "In-Transit", "trackNumber": "TRK1", "proNumber": "PRO1"}

        result = order_service.sync_order(customer_identity, placed_order.id, carrier=carrier)

        assert result.ok
        assert result.data["status_changed"] is True
        assert result.data["refund"] is None
        assert placed_order.status == "in_transit"
        assert placed_order.tracking_number == "TRK1"
        assert placed_order.status_history[-1]["source"] == "api_sync"

    def test_carrier_rejection_refunds(self, placed_order, customer_identity, carrier):
        carrier.info = {"orderStatus": "Approval rejection", "auditRemark": "Bad address"}

        result = order_service.sync_order(customer_identity, placed_order.id, carrier=carrier)

        assert placed_order.status == "rejected"
        assert result.data["refund"].status == STATUS_COMPLETED
        assert [row.amount for row in _ledger(placed_order.id, "refund")] == [120.00, 100.00]

    def test_repeated_sync_refunds_once(self, placed_order, customer_identity, carrier):
        carrier.info = {"orderStatus": "Cancelled"}

        order_service.sync_order(customer_identity, placed_order.id, carrier=carrier)
        second = order_service.sync_order(customer_identity, placed_order.id, carrier=carrier)

        assert second.data["refund"].status == STATUS_ALREADY_REFUNDED
        assert len(_ledger(placed_order.id, "refund")) == 2

    def test_terminal_status_is_kept(self, placed_order, customer_identity, carrier):
        placed_order.status = "cancelled"
        db.session.commit()
        carrier.info = {"orderStatus": "In-Transit"}

        result = order_service.sync_order(customer_identity, placed_order.id, carrier=carrier)

        assert placed_order.status == "cancelled"
        assert result.data["status_changed"] is False

    def test_carrier_failure_is_reported(self, placed_order, customer_identity):
        class BrokenCarrier:
            def order_info(self, carrier_order_id):
                raise ExternalApiError("Carrier API returned HTTP 503", status_code=503)

        result = order_service.sync_order(customer_identity, placed_order.id, carrier=BrokenCarrier())

        assert isinstance(result.error, ExternalApiError)
        assert placed_order.status == "pending_review"
