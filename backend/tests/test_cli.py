"""
Flask CLI: user bootstrap and ledger maintenance commands.
"""

import pytest

from freightdesk.extensions import db
from freightdesk.models import BalanceTransaction, User
from freightdesk.services import errors, identity_service, user_service


class TestUserCommands:
    def test_create_customer(self, app, db_session):
        runner = app.test_cli_runner()

        result = runner.invoke(args=[
            'users', 'create', '--email', 'New@Example.com', '--type', 'customer', '--ratio', '15',
        ])

        assert result.exit_code == 0
        assert "PASS Created customer new@example.com" in result.output
        assert float(User.query.filter_by(email='new@example.com').one().price_ratio) == 15.0

    def test_duplicate_email_fails(self, app, customer):
        result = app.test_cli_runner().invoke(args=[
            'users', 'create', '--email', customer.email, '--type', 'customer',
        ])
        assert "FAIL" in result.output

    def test_set_ratio_warns_when_clamped(self, app, customer):
        result = app.test_cli_runner().invoke(args=['users', 'set-ratio', str(customer.id), '600'])

        assert "WARN Ratio 600 clamped to 500.00" in result.output
        assert "PASS" in result.output

    def test_issue_token_resolves(self, app, customer):
        result = app.test_cli_runner().invoke(args=['users', 'issue-token', str(customer.id)])

        token = result.output.strip()
        assert identity_service.resolve_token(token).id == customer.id

    def test_issue_token_for_unknown_user(self, app, db_session):
        result = app.test_cli_runner().invoke(args=['users', 'issue-token', '9999'])
        assert result.output.startswith("FAIL")

    def test_unknown_user_error_is_shared(self, app, db_session):
        with pytest.raises(errors.UserNotFound) as excinfo:
            user_service.get_user(9999)

        assert isinstance(excinfo.value, errors.LedgerError)
        assert excinfo.value.code == "USER_NOT_FOUND"
        assert excinfo.value.http_status == 404

    def test_revoke_token(self, app, customer):
        token = identity_service.issue_token(customer.id)
        db.session.commit()
        runner = app.test_cli_runner()

        first = runner.invoke(args=['users', 'revoke-token', token])
        second = runner.invoke(args=['users', 'revoke-token', token])

        assert "PASS" in first.output
        assert "FAIL" in second.output
        assert identity_service.resolve_token(token) is None

    def test_deactivate_user(self, app, customer):
        result = app.test_cli_runner().invoke(args=['users', 'set-active', str(customer.id), '--inactive'])

        assert "is now inactive" in result.output
        assert db.session.get(User, customer.id).is_active is False


class TestLedgerCommands:
    def test_reconcile_clean(self, app, placed_order):
        result = app.test_cli_runner().invoke(args=['ledger', 'reconcile'])

        assert result.exit_code == 0
        assert "PASS" in result.output

    def test_reconcile_reports_orphans(self, app, placed_order):
        BalanceTransaction.query.filter_by(order_id=placed_order.id, is_supervisor_transaction=True).delete()
        db.session.commit()

        result = app.test_cli_runner().invoke(args=['ledger', 'reconcile', '--order-id', str(placed_order.id)])

        assert result.exit_code == 1
        assert "missing=supervisor" in result.output

    def test_refresh_balances(self, app, placed_order):
        result = app.test_cli_runner().invoke(args=['ledger', 'refresh-balances'])

        assert result.exit_code == 0
        assert "Refreshed balances for 2 user(s)" in result.output
