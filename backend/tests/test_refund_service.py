"""
Refund / reconciliation.

Verifies:
- A refund mirrors the original pair's magnitudes, never order.amount
- Refunding twice yields exactly one refund pair (already_refunded)
- Missing supervisor debit -> degraded single-sided refund
- Missing customer debit -> OriginalTransactionNotFound
- The store rejects a second refund pair even if the pre-check is bypassed
- The supervisor refund row follows the original admin while active, else the current one
"""

from unittest.mock import patch

from freightdesk.extensions import db
from freightdesk.models import BalanceTransaction
from freightdesk.services import refund_service
from freightdesk.services.errors import NoSupervisorFound, OrderNotFound, OriginalTransactionNotFound
from freightdesk.services.results import STATUS_ALREADY_REFUNDED, STATUS_COMPLETED, STATUS_DEGRADED

from conftest import make_user


def _refunds(order_id):
    return (
        BalanceTransaction.query
        .filter_by(order_id=order_id, transaction_type="refund")
        .order_by(BalanceTransaction.id)
        .all()
    )


class TestRefundOrder:
    def test_refund_mirrors_original_pair(self, placed_order):
        result = refund_service.refund_order(placed_order.id, "Order cancellation refund - O1")

        assert result.ok
        assert result.status == STATUS_COMPLETED
        customer_row, supervisor_row = _refunds(placed_order.id)
        assert customer_row.amount == 120.00
        assert supervisor_row.amount == 100.00
        assert supervisor_row.is_supervisor_transaction
        assert result.data["refund_amount"] == 120.00
        assert result.data["base_refund_amount"] == 100.00

    def test_refund_ignores_edited_order_amount(self, placed_order):
        placed_order.amount = 999
        db.session.commit()

        refund_service.refund_order(placed_order.id)

        assert [row.amount for row in _refunds(placed_order.id)] == [120.00, 100.00]

    def test_second_refund_is_a_no_op(self, placed_order):
        first = refund_service.refund_order(placed_order.id)
        second = refund_service.refund_order(placed_order.id)

        assert first.status == STATUS_COMPLETED
        assert second.ok
        assert second.status == STATUS_ALREADY_REFUNDED
        assert len(_refunds(placed_order.id)) == 2

    def test_history_records_the_refund(self, placed_order):
        refund_service.refund_order(placed_order.id, event="order_cancellation")

        entry = placed_order.status_history[-1]
        assert entry["event"] == "order_cancellation"
        assert entry["refund_amount"] == 120.00
        assert entry["timestamp"].endswith("Z")

    def test_unknown_order(self, db_session):
        result = refund_service.refund_order(424242)
        assert isinstance(result.error, OrderNotFound)

    def test_missing_customer_debit(self, placed_order):
        BalanceTransaction.query.filter_by(order_id=placed_order.id).delete()
        db.session.commit()

        result = refund_service.refund_order(placed_order.id)

        assert not result.ok
        assert isinstance(result.error, OriginalTransactionNotFound)
        assert _refunds(placed_order.id) == []

    def test_missing_supervisor_debit_is_degraded(self, placed_order, caplog):
        BalanceTransaction.query.filter_by(order_id=placed_order.id, is_supervisor_transaction=True).delete()
        db.session.commit()

        result = refund_service.refund_order(placed_order.id)

        assert result.ok
        assert result.status == STATUS_DEGRADED
        assert result.data["degraded"] is True
        assert result.data["supervisor_tx_id"] is None
        (row,) = _refunds(placed_order.id)
        assert row.amount == 120.00
        assert row.meta["degraded_refund"] is True
        assert "degraded single-sided refund" in caplog.text


class TestRefundSupervisor:
    def test_refund_goes_to_current_supervisor(self, admin_user, placed_order, caplog):
        replacement = make_user("ops2@freightdesk.test", "admin")
        admin_user.is_active = False
        db.session.commit()

        result = refund_service.refund_order(placed_order.id)

        assert result.ok
        assert result.status == STATUS_COMPLETED
        customer_row, supervisor_row = _refunds(placed_order.id)
        assert customer_row.amount == 120.00
        assert supervisor_row.amount == 100.00
        assert supervisor_row.user_id == replacement.id
        assert "no longer an active admin" in caplog.text

    def test_refund_stays_with_active_original_supervisor(self, admin_user, placed_order):
        make_user("ops2@freightdesk.test", "admin")

        refund_service.refund_order(placed_order.id)

        _, supervisor_row = _refunds(placed_order.id)
        assert supervisor_row.user_id == admin_user.id

    def test_no_active_admin_writes_nothing(self, admin_user, placed_order):
        admin_user.is_active = False
        db.session.commit()

        failed = refund_service.refund_order(placed_order.id)

        assert isinstance(failed.error, NoSupervisorFound)
        assert _refunds(placed_order.id) == []

        admin_user.is_active = True
        db.session.commit()
        assert refund_service.refund_order(placed_order.id).status == STATUS_COMPLETED


class TestRefundUniqueness:
    def test_store_rejects_second_pair(self, placed_order):
        refund_service.refund_order(placed_order.id)

        real_lookup = refund_service.existing_refunds
        calls = []

        def racing_lookup(*args, **kwargs):
            # A racing writer passed the pre-check before the first refund committed
            calls.append(args)
            return [] if len(calls) == 1 else real_lookup(*args, **kwargs)

        with patch.object(refund_service, "existing_refunds", side_effect=racing_lookup):
            result = refund_service.refund_order(placed_order.id)

        assert result.ok
        assert result.status == STATUS_ALREADY_REFUNDED
        assert len(_refunds(placed_order.id)) == 2

    def test_reference_refunds_are_scoped_separately(self, admin_user, placed_order):
        from freightdesk.services.transaction_service import DualTransactionData, create_dual_transaction

        create_dual_transaction(placed_order.user_id, None, DualTransactionData(
            customer_amount=12.0,
            base_amount=10.0,
            transaction_type="debit",
            description="Insurance purchase",
            order_id=placed_order.id,
            reference_id="INS-1",
        ))

        order_refund = refund_service.refund_order(placed_order.id)
        reference_refund = refund_service.refund_reference("INS-1", "Insurance refund", event="insurance_cancellation")

        assert order_refund.data["refund_amount"] == 120.00
        assert reference_refund.data["refund_amount"] == 12.00
        assert reference_refund.data["base_refund_amount"] == 10.00


class TestUnpairedSweep:
    def test_clean_ledger_has_no_unpaired_rows(self, placed_order):
        assert refund_service.find_unpaired_transactions() == []

    def test_orphan_customer_row_is_reported(self, placed_order):
        BalanceTransaction.query.filter_by(order_id=placed_order.id, is_supervisor_transaction=True).delete()
        db.session.commit()

        (item,) = refund_service.find_unpaired_transactions(placed_order.id)

        assert item["missing"] == "supervisor"
        assert item["amount"] == -120.00

    def test_orphan_supervisor_row_is_reported(self, placed_order):
        BalanceTransaction.query.filter_by(order_id=placed_order.id, is_supervisor_transaction=False).delete()
        db.session.commit()

        (item,) = refund_service.find_unpaired_transactions()

        assert item["missing"] == "customer"
        assert item["is_supervisor_transaction"] is True
