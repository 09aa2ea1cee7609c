from __future__ import annotations

from ..extensions import db
from freightdesk.time_utils import to_utc_z


class InsuranceCertificate(db.Model):
    """
    Cargo insurance certificate purchased through the insurance API.

    total_cost is the base cost charged by the insurer; customer_cost is
    what the customer paid (marked up by their ratio at purchase time).
    """
    __tablename__ = "insurance_certificates"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    certificate_number = db.Column(db.String(64), nullable=False, unique=True)
    status = db.Column(db.String(16), nullable=False, default="ACTIVE")  # ACTIVE, CANCELLED

    coverage_limit = db.Column(db.Numeric(14, 2, asdecimal=False), nullable=True)
    premium = db.Column(db.Numeric(14, 2, asdecimal=False), nullable=True)
    service_fee = db.Column(db.Numeric(14, 2, asdecimal=False), nullable=True)
    tax = db.Column(db.Numeric(14, 2, asdecimal=False), nullable=True)
    total_cost = db.Column(db.Numeric(14, 2, asdecimal=False), nullable=False)
    customer_cost = db.Column(db.Numeric(14, 2, asdecimal=False), nullable=False)
    certificate_link = db.Column(db.String(512), nullable=True)

    purchased_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancellation_reason = db.Column(db.String(8), nullable=True)
    cancellation_additional_info = db.Column(db.String(255), nullable=True)

    order = db.relationship("Order", backref=db.backref("insurance_certificates", lazy=True))

    @property
    def ledger_reference(self) -> str:
        return f"INS-{self.id}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "order_id": self.order_id,
            "certificate_number": self.certificate_number,
            "status": self.status,
            "coverage_limit": self.coverage_limit,
            "premium": self.premium,
            "service_fee": self.service_fee,
            "tax": self.tax,
            "total_cost": self.total_cost,
            "customer_cost": self.customer_cost,
            "certificate_link": self.certificate_link,
            "purchased_at": to_utc_z(self.purchased_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancellation_reason": self.cancellation_reason,
        }
