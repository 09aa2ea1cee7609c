# Overview: Service-layer operations for pricing analytics; read-only rollups over the ledger.

"""
Pricing Analytics

Read-only aggregations for the admin dashboard. Only priced customer
debits count: transaction_type = debit, customer side, base_amount set.

- Margin is profit over cost (markup on base), in percent.
- Money and percentages are rounded half-up to 2 decimals.
- Empty input gives zeroed/empty results; store errors are logged and also
  give empty results so dashboards keep rendering.
"""

from __future__ import annotations

import csv
import io
import logging
from collections import OrderedDict
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from ..models import BalanceTransaction, User
from freightdesk.time_utils import calendar_day, days_back, parse_iso_datetime, period_days, utcnow
from .price_ratio import round_money

logger = logging.getLogger(__name__)


DEFAULT_TREND_DAYS = 30

CSV_HEADERS = [
    "Customer ID",
    "Customer Email",
    "Customer Name",
    "Total Revenue",
    "Total Cost",
    "Profit",
    "Profit Margin %",
    "Transaction Count",
    "Average Price Ratio %",
]


@dataclass(frozen=True)
class AnalyticsFilters:
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    customer_id: Optional[int] = None
    transaction_type: Optional[str] = None
    min_amount: Optional[float] = None
    max_amount: Optional[float] = None

    @classmethod
    def from_args(cls, args) -> "AnalyticsFilters":
        """
        Build filters from query-string style args.

        Raises ValueError on unparseable dates or numbers.
        """
        def _float(name):
            raw = args.get(name)
            return float(raw) if raw not in (None, "") else None

        customer = args.get("customer_id")
        return cls(
            start_date=parse_iso_datetime(args.get("start_date")),
            end_date=parse_iso_datetime(args.get("end_date")),
            customer_id=int(customer) if customer not in (None, "") else None,
            transaction_type=args.get("transaction_type") or None,
            min_amount=_float("min_amount"),
            max_amount=_float("max_amount"),
        )


def _margin(profit: float, cost: float) -> float:
    return round_money(profit / cost * 100) if cost > 0 else 0.0


def _priced_debits(filters: AnalyticsFilters) -> list[BalanceTransaction]:
    if filters.transaction_type and filters.transaction_type != "debit":
        return []

    query = BalanceTransaction.query.filter(
        BalanceTransaction.transaction_type == "debit",
        BalanceTransaction.is_supervisor_transaction.is_(False),
        BalanceTransaction.base_amount.isnot(None),
    )
    if filters.start_date:
        query = query.filter(BalanceTransaction.created_at >= filters.start_date)
    if filters.end_date:
        query = query.filter(BalanceTransaction.created_at <= filters.end_date)
    if filters.customer_id:
        query = query.filter(BalanceTransaction.user_id == filters.customer_id)

    rows = query.order_by(BalanceTransaction.created_at.asc(), BalanceTransaction.id.asc()).all()

    # Amount bounds apply to the customer-facing magnitude
    if filters.min_amount is not None:
        rows = [row for row in rows if abs(float(row.amount)) >= filters.min_amount]
    if filters.max_amount is not None:
        rows = [row for row in rows if abs(float(row.amount)) <= filters.max_amount]
    return rows


def _load(filters: AnalyticsFilters, label: str) -> list[BalanceTransaction]:
    try:
        return _priced_debits(filters)
    except SQLAlchemyError:
        logger.exception("Analytics %s query failed; returning empty result", label)
        return []


def _profit_margin_of(rows: list[BalanceTransaction]) -> dict:
    revenue = 0.0
    cost = 0.0
    markup_total = 0.0
    for row in rows:
        customer_amount = abs(float(row.amount))
        base_amount = abs(float(row.base_amount))
        revenue += customer_amount
        cost += base_amount
        if base_amount > 0:
            markup_total += (customer_amount - base_amount) / base_amount * 100

    count = len(rows)
    profit = revenue - cost
    return {
        "revenue": round_money(revenue),
        "cost": round_money(cost),
        "profit": round_money(profit),
        "margin_pct": _margin(profit, cost),
        "tx_count": count,
        "avg_markup_pct": round_money(markup_total / count) if count else 0.0,
    }


def profit_margin(filters: Optional[AnalyticsFilters] = None) -> dict:
    """{revenue, cost, profit, margin_pct, tx_count, avg_markup_pct}"""
    return _profit_margin_of(_load(filters or AnalyticsFilters(), "profit margin"))


def revenue_by_customer(filters: Optional[AnalyticsFilters] = None) -> list[dict]:
    rows = _load(filters or AnalyticsFilters(), "customer revenue")
    if not rows:
        return []

    grouped: dict[int, dict] = {}
    for row in rows:
        entry = grouped.setdefault(row.user_id, {"revenue": 0.0, "cost": 0.0, "count": 0})
        entry["revenue"] += abs(float(row.amount))
        entry["cost"] += abs(float(row.base_amount))
        entry["count"] += 1

    try:
        users = {user.id: user for user in User.query.filter(User.id.in_(list(grouped))).all()}
    except SQLAlchemyError:
        logger.exception("Analytics customer lookup failed")
        users = {}

    results = []
    for customer_id, entry in grouped.items():
        user = users.get(customer_id)
        profit = entry["revenue"] - entry["cost"]
        results.append({
            "customer_id": customer_id,
            "customer_email": user.email if user else "Unknown",
            "customer_name": (user.full_name or user.email) if user else "Unknown",
            "revenue": round_money(entry["revenue"]),
            "cost": round_money(entry["cost"]),
            "profit": round_money(profit),
            "margin_pct": _margin(profit, entry["cost"]),
            "tx_count": entry["count"],
            "avg_ratio": round_money(float(user.price_ratio or 0)) if user else 0.0,
        })

    results.sort(key=lambda item: (-item["profit"], item["customer_id"]))
    return results


def trend(filters: Optional[AnalyticsFilters] = None) -> list[dict]:
    """Per calendar day; defaults to the last 30 days when no start date is given."""
    filters = filters or AnalyticsFilters()
    if filters.start_date is None:
        filters = replace(filters, start_date=days_back(DEFAULT_TREND_DAYS))

    daily: "OrderedDict[str, dict]" = OrderedDict()
    for row in _load(filters, "trend"):
        day = calendar_day(row.created_at)
        entry = daily.setdefault(day, {"revenue": 0.0, "cost": 0.0, "count": 0})
        entry["revenue"] += abs(float(row.amount))
        entry["cost"] += abs(float(row.base_amount))
        entry["count"] += 1

    results = []
    for day in sorted(daily):
        entry = daily[day]
        profit = entry["revenue"] - entry["cost"]
        results.append({
            "date": day,
            "revenue": round_money(entry["revenue"]),
            "cost": round_money(entry["cost"]),
            "profit": round_money(profit),
            "margin_pct": _margin(profit, entry["cost"]),
            "tx_count": entry["count"],
        })
    return results


def _pct_change(current: float, previous: float) -> float:
    return round_money((current - previous) / previous * 100) if previous > 0 else 0.0


def summary_stats(filters: Optional[AnalyticsFilters] = None) -> dict:
    """
    Dashboard widgets: current period against the previous period of the
    same length (30 days when the range is open).
    """
    filters = filters or AnalyticsFilters()
    current = profit_margin(filters)

    days = period_days(filters.start_date, filters.end_date, default=30)
    prev_end = filters.start_date or utcnow()
    prev_start = days_back(days, now=prev_end)
    previous = profit_margin(replace(filters, start_date=prev_start, end_date=prev_end))

    customers = revenue_by_customer(filters)
    top = customers[0] if customers else None

    return {
        "total_profit": current["profit"],
        "total_profit_change": _pct_change(current["profit"], previous["profit"]),
        "average_margin": current["margin_pct"],
        "average_margin_change": _pct_change(current["margin_pct"], previous["margin_pct"]),
        "top_customer_profit": top["profit"] if top else 0.0,
        "top_customer_name": top["customer_name"] if top else "No customers",
        "transaction_volume": current["tx_count"],
        "volume_change": _pct_change(current["tx_count"], previous["tx_count"]),
    }


def export_csv(filters: Optional[AnalyticsFilters] = None) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for item in revenue_by_customer(filters):
        writer.writerow([
            item["customer_id"],
            item["customer_email"],
            item["customer_name"],
            f"{item['revenue']:.2f}",
            f"{item['cost']:.2f}",
            f"{item['profit']:.2f}",
            f"{item['margin_pct']:.2f}",
            item["tx_count"],
            f"{item['avg_ratio']:.2f}",
        ])
    return buffer.getvalue()
