"""
Pytest fixtures for freightdesk backend tests.

Provides an in-memory ledger store, users and tokens for both roles, and
fake carrier / insurance clients injected through the app config.
"""

import pytest

from freightdesk import create_app
from freightdesk.extensions import db
from freightdesk.models import User
from freightdesk.services import identity_service, order_service
from freightdesk.services.carrier_client import CancelResult
from freightdesk.services.identity_service import identity_from_user


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'RAPIDDEALS_API_KEY': '',
        'LOADSURE_API_KEY': '',
        'INSURANCE_REFUND_WINDOW_HOURS': 24,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Empty every table before the test; drop the session after it."""
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    db.session.rollback()
    db.session.remove()
    app.config.pop('CARRIER_CLIENT_FACTORY', None)
    app.config.pop('INSURANCE_CLIENT_FACTORY', None)


# =============================================================================
# USERS
# =============================================================================

def make_user(email, user_type, *, price_ratio=0, is_active=True, full_name=None):
    user = User(
        email=email,
        user_type=user_type,
        full_name=full_name,
        price_ratio=price_ratio,
        is_active=is_active,
    )
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture(scope='function')
def admin_user(db_session):
    """Supervisor; the stored ratio must never apply to an admin."""
    return make_user("admin@freightdesk.test", "admin", price_ratio=35, full_name="Ops Admin")


@pytest.fixture(scope='function')
def customer(db_session):
    """Customer priced at base + 20%."""
    return make_user("acme@example.com", "customer", price_ratio=20, full_name="Acme Logistics")


@pytest.fixture(scope='function')
def other_customer(db_session):
    return make_user("beta@example.com", "customer", price_ratio=10, full_name="Beta Freight")


@pytest.fixture(scope='function')
def admin_identity(admin_user):
    return identity_from_user(admin_user)


@pytest.fixture(scope='function')
def customer_identity(customer):
    return identity_from_user(customer)


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


def headers_for(user) -> dict:
    token = identity_service.issue_token(user.id)
    db.session.commit()
    return auth_headers(token)


@pytest.fixture(scope='function')
def admin_headers(admin_user):
    return headers_for(admin_user)


@pytest.fixture(scope='function')
def customer_headers(customer):
    return headers_for(customer)


# =============================================================================
# EXTERNAL COLLABORATORS
# =============================================================================

class FakeCarrier:
    """Stands in for RapidDealsClient; records every call."""

    def __init__(self):
        self.cancel_result = CancelResult(ok=True, audit_remark="Cancelled by customer request", message="success")
        self.cancel_error = None
        self.info = {"orderStatus": "check pending"}
        self.placed = []
        self.cancelled = []
        self.info_requests = []
        self.closed = False

    def cancel_order(self, order_number, reason=None):
        self.cancelled.append((order_number, reason))
        if self.cancel_error is not None:
            raise self.cancel_error
        return self.cancel_result

    def order_info(self, carrier_order_id):
        self.info_requests.append(carrier_order_id)
        return dict(self.info)

    def place_order(self, payload):
        self.placed.append(payload)
        return {"code": 200, "data": {"orderId": f"C-{payload['orderId']}"}}

    def close(self):
        self.closed = True


class FakeInsurer:
    """Stands in for LoadsureClient."""

    def __init__(self, configured=True):
        self.configured = configured
        self.cancel_error = None
        self.cancelled = []
        self.purchases = []

    def purchase(self, quote_token, *, send_emails_to=None, po_number=None):
        self.purchases.append(quote_token)
        return {
            "certificateNumber": "LS-0001",
            "premium": 40.0,
            "serviceFee": 5.0,
            "tax": 5.0,
            "limit": 100000,
            "status": "ACTIVE",
            "certificateLink": "https://certs.example/LS-0001.pdf",
        }

    def cancel_certificate(self, certificate_number, reason, **kwargs):
        self.cancelled.append((certificate_number, reason, kwargs))
        if self.cancel_error is not None:
            raise self.cancel_error
        return {"canceledDate": None}

    def close(self):
        pass


@pytest.fixture(scope='function')
def carrier(app, db_session):
    fake = FakeCarrier()
    app.config['CARRIER_CLIENT_FACTORY'] = lambda: fake
    return fake


@pytest.fixture(scope='function')
def insurer(app, db_session):
    fake = FakeInsurer()
    app.config['INSURANCE_CLIENT_FACTORY'] = lambda: fake
    return fake


# =============================================================================
# ORDERS
# =============================================================================

def place(identity, total_charge, order_number, **fields):
    result = order_service.place_order(
        identity,
        {"totalCharge": total_charge, "orderId": order_number},
        fields or None,
    )
    assert result.ok, result.error and result.error.message
    return result.data["order"]


@pytest.fixture(scope='function')
def placed_order(admin_user, customer_identity):
    """Order O1: base $100, shown to the customer at $120."""
    return place(customer_identity, 120.0, "O1", service_type="LTL")
