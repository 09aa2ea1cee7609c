"""
HTTP surface: auth guards, status codes and response shapes.
"""

from freightdesk.extensions import db
from freightdesk.models import BalanceTransaction, User

from conftest import auth_headers, headers_for


class TestAuthGuards:
    def test_missing_token(self, client, db_session):
        response = client.get("/api/orders")
        assert response.status_code == 401
        assert response.get_json()["error"] == "Authentication required"

    def test_unknown_token(self, client, db_session):
        response = client.get("/api/orders", headers=auth_headers("not-a-token"))
        assert response.status_code == 401

    def test_deactivated_user(self, client, customer):
        headers = headers_for(customer)
        customer.is_active = False
        db.session.commit()

        response = client.get("/api/orders", headers=headers)

        assert response.status_code == 403

    def test_customer_cannot_reach_admin_routes(self, client, customer_headers):
        assert client.get("/api/analytics/summary", headers=customer_headers).status_code == 403
        assert client.get("/api/admin/ledger/unpaired", headers=customer_headers).status_code == 403


class TestHealth:
    def test_degraded_without_supervisor(self, client, db_session):
        response = client.get("/api/health")

        assert response.status_code == 200
        body = response.get_json()
        assert body["status"] == "degraded"
        assert body["checks"]["database"]["status"] == "healthy"

    def test_healthy_with_supervisor(self, client, admin_user):
        assert client.get("/api/health").get_json()["status"] == "healthy"


class TestPricingRoutes:
    def test_customer_quote_is_marked_up(self, client, customer_headers):
        response = client.post("/api/pricing/quote", json={"quote": {"totalCharge": 100}}, headers=customer_headers)

        assert response.status_code == 200
        assert response.get_json()["quote"]["totalCharge"] == 120.00

    def test_admin_quote_is_base(self, client, admin_headers):
        response = client.post("/api/pricing/quote", json={"quotes": [{"totalCharge": 100}]}, headers=admin_headers)
        assert response.get_json()["quotes"][0]["totalCharge"] == 100

    def test_quote_required(self, client, customer_headers):
        response = client.post("/api/pricing/quote", json={}, headers=customer_headers)
        assert response.status_code == 400

    def test_my_ratio(self, client, customer_headers):
        body = client.get("/api/pricing/ratio", headers=customer_headers).get_json()
        assert body["role"] == "customer"
        assert body["effective_ratio"] == 20.0
        assert body["clamped"] is False


class TestOrderRoutes:
    def test_place_view_cancel(self, client, admin_user, customer_headers, admin_headers, carrier):
        placed = client.post(
            "/api/orders/place",
            json={"quote": {"totalCharge": 120, "orderId": "W-1"}, "order": {"service_type": "LTL"}},
            headers=customer_headers,
        )
        assert placed.status_code == 201
        order_id = placed.get_json()["data"]["order"]["id"]

        admin_view = client.get(f"/api/orders/{order_id}", headers=admin_headers).get_json()["order"]
        customer_view = client.get(f"/api/orders/{order_id}", headers=customer_headers).get_json()["order"]
        assert admin_view["amount"] == 100.00
        assert customer_view["amount"] == 120.00

        cancelled = client.post("/api/orders/cancel", json={"order_id": order_id, "reason": "Oops"}, headers=customer_headers)
        body = cancelled.get_json()
        assert cancelled.status_code == 200
        assert body["success"] is True
        assert body["refund"]["status"] == "completed"
        assert carrier.cancelled == [("W-1", "Oops")]

    def test_place_without_supervisor(self, client, customer_headers):
        response = client.post("/api/orders/place", json={"quote": {"totalCharge": 10, "orderId": "W-2"}}, headers=customer_headers)

        assert response.status_code == 409
        assert response.get_json()["code"] == "NO_SUPERVISOR_FOUND"

    def test_unknown_order(self, client, customer_headers):
        response = client.get("/api/orders/9999", headers=customer_headers)
        assert response.status_code == 404
        assert response.get_json()["code"] == "ORDER_NOT_FOUND"

    def test_cancel_requires_order_id(self, client, customer_headers, carrier):
        response = client.post("/api/orders/cancel", json={}, headers=customer_headers)
        assert response.status_code == 400

    def test_reject_is_admin_only(self, client, placed_order, customer_headers):
        response = client.post("/api/orders/reject", json={"order_id": placed_order.id, "reason": "x"}, headers=customer_headers)
        assert response.status_code == 403


class TestAdminRoutes:
    def test_ratio_is_clamped(self, client, admin_headers, customer):
        response = client.put(f"/api/admin/users/{customer.id}/price-ratio", json={"price_ratio": 600}, headers=admin_headers)

        body = response.get_json()
        assert response.status_code == 200
        assert body["price_ratio"] == 500.0
        assert body["clamped"] is True
        assert float(db.session.get(User, customer.id).price_ratio) == 500.0

    def test_ratio_for_unknown_user(self, client, admin_headers):
        response = client.put("/api/admin/users/9999/price-ratio", json={"price_ratio": 10}, headers=admin_headers)
        assert response.status_code == 404
        assert response.get_json()["code"] == "USER_NOT_FOUND"

    def test_unpaired_sweep(self, client, admin_headers, placed_order):
        BalanceTransaction.query.filter_by(order_id=placed_order.id, is_supervisor_transaction=True).delete()
        db.session.commit()

        body = client.get(f"/api/admin/ledger/unpaired?order_id={placed_order.id}", headers=admin_headers).get_json()

        assert body["count"] == 1
        assert body["unpaired"][0]["missing"] == "supervisor"


class TestAnalyticsRoutes:
    def test_csv_export(self, client, admin_headers, placed_order):
        response = client.get("/api/analytics/export", headers=admin_headers)

        assert response.status_code == 200
        assert response.mimetype == "text/csv"
        assert "pricing-analytics-" in response.headers["Content-Disposition"]
        assert response.get_data(as_text=True).startswith("Customer ID,Customer Email")

    def test_bad_filter(self, client, admin_headers):
        response = client.get("/api/analytics/profit-margin?start_date=soon", headers=admin_headers)
        assert response.status_code == 400

    def test_summary(self, client, admin_headers, placed_order):
        body = client.get("/api/analytics/summary", headers=admin_headers).get_json()
        assert body["top_customer_name"] == "Acme Logistics"


class TestBalanceRoutes:
    def test_balance_after_order(self, client, customer_headers, placed_order):
        body = client.get("/api/balance", headers=customer_headers).get_json()
        assert body["balance"]["current_balance"] == -120.00

    def test_transactions_are_scoped(self, client, customer_headers, placed_order):
        body = client.get("/api/balance/transactions", headers=customer_headers).get_json()

        assert body["total"] == 1
        assert body["transactions"][0]["amount"] == -120.00

    def test_admin_credit(self, client, admin_headers, customer):
        response = client.post(
            "/api/balance/transactions",
            json={"amount": 25, "transaction_type": "credit", "user_id": customer.id, "description": "Goodwill"},
            headers=admin_headers,
        )

        assert response.status_code == 201
        assert response.get_json()["data"]["amount"] == 25.00

    def test_customer_cannot_write_dual(self, client, admin_user, customer_headers):
        response = client.post(
            "/api/balance/transactions",
            json={"amount": 25, "transaction_type": "credit", "dual": True},
            headers=customer_headers,
        )
        assert response.status_code == 403

    def test_customer_refund_entry_does_not_block_order_refund(self, client, placed_order, customer_headers, carrier):
        refund = client.post(
            "/api/balance/transactions",
            json={"amount": 5000, "transaction_type": "refund", "order_id": placed_order.id},
            headers=customer_headers,
        )
        credit = client.post(
            "/api/balance/transactions",
            json={"amount": 1000000, "transaction_type": "credit"},
            headers=customer_headers,
        )
        assert refund.status_code == 403
        assert credit.status_code == 403

        cancelled = client.post(
            "/api/orders/cancel", json={"order_id": placed_order.id, "reason": "Oops"}, headers=customer_headers
        )
        assert cancelled.get_json()["refund"]["status"] == "completed"

        rows = (
            BalanceTransaction.query
            .filter_by(order_id=placed_order.id, transaction_type="refund")
            .order_by(BalanceTransaction.is_supervisor_transaction.asc())
            .all()
        )
        assert [(float(row.amount), row.is_supervisor_transaction) for row in rows] == [(120.0, False), (100.0, True)]
