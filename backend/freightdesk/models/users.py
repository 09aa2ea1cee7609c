from __future__ import annotations

from ..extensions import db
from freightdesk.time_utils import to_utc_z


USER_TYPE_ADMIN = "admin"
USER_TYPE_CUSTOMER = "customer"
VALID_USER_TYPES = (USER_TYPE_ADMIN, USER_TYPE_CUSTOMER)


class User(db.Model):
    """
    Portal actor (admin or customer).

    Customers carry a price_ratio (percentage markup over base cost).
    Admins always transact and view at ratio 0, whatever is stored here.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.Index("ix_users_type_active", "user_type", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    full_name = db.Column(db.String(255), nullable=True)
    company_name = db.Column(db.String(255), nullable=True)

    user_type = db.Column(db.String(16), nullable=False, default=USER_TYPE_CUSTOMER)
    price_ratio = db.Column(db.Numeric(8, 2, asdecimal=False), nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=db.func.now())

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} type={self.user_type}>"

    @property
    def display_name(self) -> str:
        return self.company_name or self.full_name or self.email

    @property
    def order_account(self) -> str:
        return f"ACC-{self.id:08d}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "company_name": self.company_name,
            "user_type": self.user_type,
            "price_ratio": float(self.price_ratio or 0),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class SessionToken(db.Model):
    """
    Bearer token issued to a user by admin tooling.

    Only the SHA-256 hash of the token is stored.
    """
    __tablename__ = "session_tokens"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    user = db.relationship("User", backref=db.backref("session_tokens", lazy=True))
