# Overview: Pure price-ratio arithmetic (customer price <-> base price).

"""
Price Ratio Math

WHY: Customers pay base cost marked up by their personal ratio; admins see
the base cost. Every conversion between the two goes through this module.

RULES:
- Ratios are plain percentages: 20 means +20%, -10 means a 10% discount.
- Ratios are clamped to [MIN_RATIO, MAX_RATIO]. Clamping is permissive
  (never rejected) but observable: normalize_ratio() returns whether the
  value was adjusted and logs a warning.
- Monetary outputs are rounded half-up to 2 decimal places using Decimal.
- A -100% ratio is a domain error for to_base_price (division by zero),
  never Infinity or NaN.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from numbers import Real

from .errors import InvalidInput, RatioDomainError

logger = logging.getLogger(__name__)


MIN_RATIO = -50.0
MAX_RATIO = 500.0
PRECISION = 2
DEFAULT_RATIO = 0.0

_CENT = Decimal(1).scaleb(-PRECISION)
_HUNDRED = Decimal(100)


@dataclass(frozen=True)
class RatioNormalization:
    requested: object
    ratio: float
    clamped: bool


@dataclass(frozen=True)
class PriceDetails:
    base_price: float
    customer_price: float
    markup: float
    markup_percentage: float
    price_ratio: float
    ratio_clamped: bool

    def to_dict(self) -> dict:
        return {
            "base_price": self.base_price,
            "customer_price": self.customer_price,
            "markup": self.markup,
            "markup_percentage": self.markup_percentage,
            "price_ratio": self.price_ratio,
            "ratio_clamped": self.ratio_clamped,
        }


# =============================================================================
# PARSING / ROUNDING
# =============================================================================

def parse_number(value) -> float:
    """Numbers and numeric strings -> float; anything else -> NaN."""
    if isinstance(value, bool):
        return math.nan
    if isinstance(value, (Real, Decimal)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return math.nan
    return math.nan


def round_money(value) -> float:
    """Round half-up to currency precision."""
    try:
        quantized = Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise InvalidInput(f"Cannot round non-numeric amount: {value!r}")
    return float(quantized)


def require_price(value, label: str) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (Real, Decimal)):
        raise InvalidInput(f"Invalid {label}: {value!r}", field=label)
    as_float = float(value)
    if math.isnan(as_float) or math.isinf(as_float) or as_float < 0:
        raise InvalidInput(f"Invalid {label}: {value!r}", field=label)
    return Decimal(str(value))


# =============================================================================
# RATIO NORMALIZATION
# =============================================================================

def normalize_ratio(value) -> RatioNormalization:
    """
    Parse and clamp a ratio to [MIN_RATIO, MAX_RATIO].

    Non-numeric input falls back to DEFAULT_RATIO. Any adjustment is
    logged and reported through `clamped`.
    """
    if value is None:
        return RatioNormalization(requested=value, ratio=DEFAULT_RATIO, clamped=False)

    number = parse_number(value)
    if math.isnan(number) or math.isinf(number):
        logger.warning("Invalid price ratio %r, using default %s", value, DEFAULT_RATIO)
        return RatioNormalization(requested=value, ratio=DEFAULT_RATIO, clamped=True)

    if number < MIN_RATIO:
        logger.warning("Price ratio %s below minimum, using %s", number, MIN_RATIO)
        return RatioNormalization(requested=value, ratio=MIN_RATIO, clamped=True)

    if number > MAX_RATIO:
        logger.warning("Price ratio %s above maximum, using %s", number, MAX_RATIO)
        return RatioNormalization(requested=value, ratio=MAX_RATIO, clamped=True)

    return RatioNormalization(requested=value, ratio=number, clamped=False)


def clamp_ratio(value) -> float:
    return normalize_ratio(value).ratio


# =============================================================================
# CONVERSIONS
# =============================================================================

def to_customer_price(base_price, price_ratio=DEFAULT_RATIO) -> float:
    """
    Customer price = base price * (1 + ratio/100), rounded to cents.

    Raises:
        InvalidInput: base price negative, NaN or non-numeric
    """
    base = require_price(base_price, "base price")
    ratio = Decimal(str(clamp_ratio(price_ratio)))
    return round_money(base * (1 + ratio / _HUNDRED))


def to_base_price(customer_price, price_ratio=DEFAULT_RATIO) -> float:
    """
    Base price = customer price / (1 + ratio/100), rounded to cents.

    Raises:
        InvalidInput: customer price negative, NaN or non-numeric
        RatioDomainError: ratio of -100 (requested or effective)
    """
    customer = require_price(customer_price, "customer price")

    if parse_number(price_ratio) == -100:
        raise RatioDomainError("Cannot calculate base price with -100% ratio", price_ratio=-100)

    ratio = Decimal(str(clamp_ratio(price_ratio)))
    divisor = 1 + ratio / _HUNDRED
    if divisor == 0:
        raise RatioDomainError("Cannot calculate base price with -100% ratio", price_ratio=float(ratio))

    return round_money(customer / divisor)


def markup_amount(base_price, price_ratio=DEFAULT_RATIO) -> float:
    customer = to_customer_price(base_price, price_ratio)
    return round_money(Decimal(str(customer)) - Decimal(str(base_price)))


def price_details(base_price, price_ratio=DEFAULT_RATIO) -> PriceDetails:
    normalization = normalize_ratio(price_ratio)
    customer = to_customer_price(base_price, normalization.ratio)
    return PriceDetails(
        base_price=round_money(base_price),
        customer_price=customer,
        markup=round_money(Decimal(str(customer)) - Decimal(str(base_price))),
        markup_percentage=normalization.ratio,
        price_ratio=normalization.ratio,
        ratio_clamped=normalization.clamped,
    )


def format_price_for_user(base_price, user_type: str, price_ratio=DEFAULT_RATIO) -> str:
    """Admins see base prices, everyone else the marked-up price, as USD."""
    if user_type == "admin":
        display = round_money(require_price(base_price, "base price"))
    else:
        display = to_customer_price(base_price, price_ratio)
    return f"${display:,.2f}"
