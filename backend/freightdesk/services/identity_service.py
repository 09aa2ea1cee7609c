# Overview: Service-layer operations for identity; resolves bearer tokens to the acting user.

"""
Identity Resolution

WHY: Every pricing and ledger decision depends on who is acting: their
role, their price ratio and whether they are still active. Routes resolve
a bearer token once and pass an Identity down to the services.

SECURITY:
- Tokens are random 32-byte hex strings issued by admin tooling (CLI)
- Only the SHA-256 hash is stored
- Revoked or expired tokens resolve to None
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from ..extensions import db
from ..models import SessionToken, User
from ..models.users import USER_TYPE_ADMIN
from freightdesk.time_utils import utcnow


@dataclass(frozen=True)
class Identity:
    """Resolved actor: (id, role, price_ratio, is_active)."""
    id: int
    role: str
    price_ratio: float = 0.0
    is_active: bool = True
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == USER_TYPE_ADMIN

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "role": self.role,
            "price_ratio": self.price_ratio,
            "is_active": self.is_active,
            "email": self.email,
        }


def identity_from_user(user: User) -> Identity:
    return Identity(
        id=user.id,
        role=user.user_type,
        price_ratio=float(user.price_ratio or 0),
        is_active=bool(user.is_active),
        email=user.email,
    )


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def issue_token(user_id: int, *, ttl_hours: Optional[int] = None) -> str:
    """
    Create a bearer token for a user and return the plaintext once.

    Caller commits.
    """
    token = generate_token()
    expires_at = utcnow() + timedelta(hours=ttl_hours) if ttl_hours else None
    db.session.add(SessionToken(user_id=user_id, token_hash=hash_token(token), expires_at=expires_at))
    db.session.flush()
    return token


def revoke_token(token: str) -> bool:
    row = SessionToken.query.filter_by(token_hash=hash_token(token)).first()
    if not row or row.revoked_at is not None:
        return False
    row.revoked_at = utcnow()
    return True


def resolve_token(token: str) -> Optional[Identity]:
    """
    Bearer token -> Identity, or None when unknown, revoked or expired.

    Inactive users still resolve; the caller decides how to refuse them.
    """
    if not token:
        return None
    row = SessionToken.query.filter_by(token_hash=hash_token(token)).first()
    if not row or row.revoked_at is not None:
        return None
    if row.expires_at is not None and row.expires_at.replace(tzinfo=None) <= utcnow():
        return None
    user = db.session.get(User, row.user_id)
    if not user:
        return None
    return identity_from_user(user)
