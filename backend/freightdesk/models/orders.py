from __future__ import annotations

from ..extensions import db
from freightdesk.time_utils import to_utc_z


class Order(db.Model):
    """
    Freight shipment booking.

    `amount` is always stored at customer price (already marked up).
    The base price is derived from the ledger pair, never stored here.

    status_history is an append-only JSON list; callers must assign a new
    list rather than mutate the stored one so SQLAlchemy sees the change.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_user_status", "user_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # Carrier-side identifier (RapidDeals orderId)
    order_number = db.Column(db.String(64), nullable=False, unique=True)
    carrier_order_id = db.Column(db.String(64), nullable=True)

    status = db.Column(db.String(32), nullable=False, default="pending_review", index=True)
    carrier_status = db.Column(db.String(64), nullable=True)
    audit_remark = db.Column(db.String(255), nullable=True)

    amount = db.Column(db.Numeric(14, 2, asdecimal=False), nullable=False, default=0)
    company_name = db.Column(db.String(255), nullable=True)
    service_type = db.Column(db.String(16), nullable=True)  # LTL, TL, FBA
    carrier_name = db.Column(db.String(128), nullable=True)

    tracking_number = db.Column(db.String(64), nullable=True)
    pro_number = db.Column(db.String(64), nullable=True)

    has_insurance = db.Column(db.Boolean, nullable=False, default=False)
    insurance_certificate_number = db.Column(db.String(64), nullable=True)

    status_history = db.Column(db.JSON, nullable=False, default=list)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_api_sync = db.Column(db.DateTime(timezone=True), nullable=True)

    user = db.relationship("User", backref=db.backref("orders", lazy=True))

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "order_number": self.order_number,
            "carrier_order_id": self.carrier_order_id,
            "status": self.status,
            "carrier_status": self.carrier_status,
            "audit_remark": self.audit_remark,
            "amount": float(self.amount or 0),
            "company_name": self.company_name,
            "service_type": self.service_type,
            "carrier_name": self.carrier_name,
            "tracking_number": self.tracking_number,
            "pro_number": self.pro_number,
            "has_insurance": self.has_insurance,
            "insurance_certificate_number": self.insurance_certificate_number,
            "status_history": list(self.status_history or []),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "last_api_sync": to_utc_z(self.last_api_sync),
        }
