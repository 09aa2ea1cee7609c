# Overview: Applies the price ratio to quote payloads and resolves a viewer's ratio.

"""
Pricing Engine

WHY: Carrier quotes arrive at base cost. Customers must only ever see their
marked-up price; admins see the base cost. This module is stateless: the
ratio comes from the acting identity on every call.

KNOWN LIMITATION: apply_to_payload() is not idempotent. Applying it twice
with the same non-zero ratio marks up an already marked-up price
((1 + r/100) ** 2 times base). Callers must apply it once, at the edge.
"""

from __future__ import annotations

import copy
from typing import Any, Iterable, Mapping

from .price_ratio import DEFAULT_RATIO, clamp_ratio, parse_number, to_base_price, to_customer_price

ROLE_ADMIN = "admin"
ROLE_CUSTOMER = "customer"

PRICE_FIELDS = (
    "totalCharge",
    "lineCharge",
    "fuelCharge",
    "accessorialCharge",
    "insuranceCharge",
    "rate",
    "cost",
    "price",
    "amount",
    "baseRate",
    "totalRate",
    "netCharge",
)

# Both spellings appear in carrier payloads
ACCESSORIAL_LIST_FIELDS = ("accessorialsList", "accesoriesList")


def _attr(user: Any, *names: str, default=None):
    for name in names:
        if isinstance(user, Mapping):
            if name in user:
                return user[name]
        elif hasattr(user, name):
            return getattr(user, name)
    return default


def role_of(user: Any) -> str | None:
    return _attr(user, "role", "user_type")


def effective_ratio(user: Any) -> float:
    """
    Ratio to apply for this viewer.

    admin -> 0 (base price), customer -> clamped price_ratio,
    anything else -> 0.
    """
    role = role_of(user)
    if role == ROLE_ADMIN:
        return DEFAULT_RATIO
    if role == ROLE_CUSTOMER:
        return clamp_ratio(_attr(user, "price_ratio", default=DEFAULT_RATIO) or DEFAULT_RATIO)
    return DEFAULT_RATIO


def customer_price_for(user: Any, base_price) -> float:
    return to_customer_price(base_price, effective_ratio(user))


def base_price_for(user: Any, customer_price) -> float:
    return to_base_price(customer_price, effective_ratio(user))


# =============================================================================
# PAYLOAD TRANSFORMATION
# =============================================================================

def _price_value(value, ratio: float):
    """
    Marked-up replacement for a price value, or None to leave it untouched.

    Strings stay strings (2 decimals), numbers stay numbers.
    """
    if value is None or isinstance(value, bool):
        return None
    number = parse_number(value)
    if number != number or number <= 0:  # NaN or non-positive
        return None
    marked_up = to_customer_price(number, ratio)
    if isinstance(value, str):
        return f"{marked_up:.2f}"
    return marked_up


def _apply_ratio(payload: dict, ratio: float) -> dict:
    for field in PRICE_FIELDS:
        if field in payload:
            new_value = _price_value(payload[field], ratio)
            if new_value is not None:
                payload[field] = new_value

    charges = payload.get("charges")
    if isinstance(charges, dict):
        for key, value in list(charges.items()):
            new_value = _price_value(value, ratio)
            if new_value is not None:
                charges[key] = new_value

    for list_field in ACCESSORIAL_LIST_FIELDS:
        items = payload.get(list_field)
        if isinstance(items, list):
            for item in items:
                if isinstance(item, dict) and "chargeAmount" in item:
                    new_value = _price_value(item["chargeAmount"], ratio)
                    if new_value is not None:
                        item["chargeAmount"] = new_value

    rates = payload.get("rates")
    if isinstance(rates, list):
        payload["rates"] = [
            _apply_ratio(rate, ratio) if isinstance(rate, dict) else rate
            for rate in rates
        ]

    return payload


def apply_to_payload(payload: dict, user: Any) -> dict:
    """
    Price a quote-shaped payload for the viewer.

    Admins get the payload back unchanged (the same object). Customers get
    a deep copy with every allow-listed price field marked up; the input is
    never mutated.
    """
    if role_of(user) == ROLE_ADMIN:
        return payload
    return _apply_ratio(copy.deepcopy(payload), effective_ratio(user))


def apply_to_payloads(payloads: Iterable[dict], user: Any) -> list[dict]:
    return [apply_to_payload(payload, user) for payload in payloads]
