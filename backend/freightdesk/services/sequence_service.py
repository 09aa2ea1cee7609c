# Overview: Allocates human-readable transaction ids from a store-side counter.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import TransactionSequence
from freightdesk.time_utils import utcnow


TRANSACTION_PREFIX = "TXN"


def next_transaction_id(*, prefix: str = TRANSACTION_PREFIX, year: int | None = None, pad: int = 6) -> str:
    """
    Allocate the next transaction id for a prefix/year, e.g. TXN-2026-000042.

    The counter row is bumped with a single UPDATE, so two writers can never
    receive the same number. Runs inside the caller's transaction: if the
    caller rolls back, the number is released with it.
    """
    year = year or utcnow().year

    stmt = (
        update(TransactionSequence)
        .where(
            TransactionSequence.prefix == prefix,
            TransactionSequence.year == year,
        )
        .values(next_number=TransactionSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        next_num = _allocated(prefix, year)
    else:
        seq = TransactionSequence(prefix=prefix, year=year, next_number=2)
        try:
            with db.session.begin_nested():
                db.session.add(seq)
            next_num = 1
        except IntegrityError:
            # Another writer created the counter first
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            next_num = _allocated(prefix, year)

    return f"{prefix}-{year}-{next_num:0{pad}d}"


def _allocated(prefix: str, year: int) -> int:
    db.session.flush()
    current = (
        db.session.query(TransactionSequence.next_number)
        .filter_by(prefix=prefix, year=year)
        .scalar()
    )
    return current - 1
