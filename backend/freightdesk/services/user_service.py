# Overview: Service-layer operations for portal users; creation, price ratio and activation.

"""
User Management

Users are created by admin tooling (CLI) only. A customer's price_ratio is
stored already normalized, so every later read sees a value inside the
allowed range; the clamp is reported back to the caller.
"""

from __future__ import annotations

import logging
from typing import Optional

from ..extensions import db
from ..models import User
from ..models.users import USER_TYPE_ADMIN, VALID_USER_TYPES
from .errors import InvalidInput, UserNotFound
from .price_ratio import RatioNormalization, normalize_ratio, parse_number

logger = logging.getLogger(__name__)


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if not user:
        raise UserNotFound(f"User {user_id} not found", user_id=user_id)
    return user


def create_user(
    email: str,
    user_type: str,
    *,
    full_name: Optional[str] = None,
    company_name: Optional[str] = None,
    price_ratio=0,
) -> User:
    """
    Create a portal user.

    Raises InvalidInput for an unknown user_type or a duplicate email.
    Admin ratios are stored as 0; they never apply anyway.
    """
    if user_type not in VALID_USER_TYPES:
        raise InvalidInput(f"Invalid user_type: {user_type!r}", field="user_type")
    email = (email or "").strip().lower()
    if not email or "@" not in email:
        raise InvalidInput("A valid email is required", field="email")
    if db.session.query(User).filter_by(email=email).first():
        raise InvalidInput(f"User {email} already exists", field="email")

    ratio = 0.0 if user_type == USER_TYPE_ADMIN else normalize_ratio(price_ratio).ratio
    user = User(
        email=email,
        user_type=user_type,
        full_name=full_name,
        company_name=company_name,
        price_ratio=ratio,
        is_active=True,
    )
    db.session.add(user)
    db.session.flush()
    return user


def set_price_ratio(user_id: int, value) -> RatioNormalization:
    """
    Store a normalized ratio; the caller commits.

    Non-numeric input is rejected here rather than silently defaulted:
    an admin typing a bad value should hear about it.
    """
    user = get_user(user_id)
    number = parse_number(value)
    if number != number:
        raise InvalidInput(f"Invalid price ratio: {value!r}", field="price_ratio")

    normalization = normalize_ratio(number)
    user.price_ratio = normalization.ratio
    db.session.flush()
    if normalization.clamped:
        logger.warning("Price ratio for user %s clamped from %s to %s", user_id, value, normalization.ratio)
    return normalization


def set_active(user_id: int, active: bool) -> User:
    user = get_user(user_id)
    user.is_active = active
    db.session.flush()
    return user
