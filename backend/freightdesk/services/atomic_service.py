# Overview: Multi-row write helper with all-or-nothing semantics at the store boundary.

"""
Atomic Write Helper

WHY: A business event (order placement, refund) writes several rows that
must land together: an order plus its two ledger rows, or a customer row
plus its supervisor row. Partial writes leave unpaired ledger entries.

DESIGN:
- Operations run sequentially inside one SAVEPOINT, each one flushed so
  later operations can reference earlier results (e.g. the new order id).
- Any failure rolls the SAVEPOINT back. Because this is a real database
  transaction, inserts AND updates/deletes are undone.
- If the rollback itself fails, nothing can be assumed about the store:
  the result is a PartialWriteFailure (manual intervention required) and
  the full operation list is logged for repair. It is never reported as
  success.
- balance_transactions is append-only: update/delete operations against
  it are rejected before anything runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence, Union

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import BalanceTransaction, InsuranceCertificate, Order, UserBalance
from .errors import InvalidInput, LedgerError, PartialWriteFailure, WriteFailed
from .results import LedgerResult

logger = logging.getLogger(__name__)


OP_INSERT = "insert"
OP_UPDATE = "update"
OP_DELETE = "delete"
VALID_KINDS = (OP_INSERT, OP_UPDATE, OP_DELETE)

TABLES = {
    "orders": Order,
    "balance_transactions": BalanceTransaction,
    "insurance_certificates": InsuranceCertificate,
    "user_balances": UserBalance,
}

APPEND_ONLY_TABLES = {"balance_transactions"}

# Wire names that differ from mapped attribute names
COLUMN_ALIASES = {
    "balance_transactions": {"metadata": "meta"},
}

OperationData = Union[dict, Callable[[list], dict], None]


@dataclass
class AtomicOperation:
    """
    One step of an atomic write.

    data may be a dict or a callable receiving the results of the previous
    operations (inserted rows / affected counts) and returning a dict.
    """
    table: str
    kind: str
    data: OperationData = None
    match: Optional[dict] = None

    def describe(self) -> dict:
        return {
            "table": self.table,
            "kind": self.kind,
            "match": self.match,
            "data": "<deferred>" if callable(self.data) else self.data,
        }


def validate_operations(operations: Sequence[AtomicOperation]) -> None:
    if not operations:
        raise InvalidInput("At least one operation is required")

    for index, op in enumerate(operations):
        if op.table not in TABLES:
            raise InvalidInput(f"Operation {index}: unknown table {op.table!r}")
        if op.kind not in VALID_KINDS:
            raise InvalidInput(f"Operation {index}: unknown kind {op.kind!r}")
        if op.kind in (OP_UPDATE, OP_DELETE):
            if not op.match:
                raise InvalidInput(f"Operation {index}: {op.kind} requires match criteria")
            if op.table in APPEND_ONLY_TABLES:
                raise InvalidInput(f"Operation {index}: {op.table} is append-only")
        if op.kind in (OP_INSERT, OP_UPDATE) and op.data is None:
            raise InvalidInput(f"Operation {index}: {op.kind} requires data")


def _resolve_data(op: AtomicOperation, prior: list) -> dict:
    data = op.data(prior) if callable(op.data) else op.data
    if not isinstance(data, dict):
        raise InvalidInput(f"{op.kind} on {op.table} requires a mapping of column values")
    aliases = COLUMN_ALIASES.get(op.table, {})
    return {aliases.get(key, key): value for key, value in data.items()}


def _apply(op: AtomicOperation, prior: list) -> Any:
    model = TABLES[op.table]

    if op.kind == OP_INSERT:
        values = _resolve_data(op, prior)
        columns = set(model.__mapper__.attrs.keys())
        unknown = sorted(set(values) - columns)
        if unknown:
            raise InvalidInput(f"Unknown columns for {op.table}: {', '.join(unknown)}")
        row = model(**values)
        db.session.add(row)
        db.session.flush()
        return row

    query = db.session.query(model).filter_by(**op.match)
    if op.kind == OP_UPDATE:
        count = query.update(_resolve_data(op, prior), synchronize_session="fetch")
    else:
        count = query.delete(synchronize_session="fetch")
    db.session.flush()
    return count


def execute_atomic(operations: Sequence[AtomicOperation], *, commit: bool = True) -> LedgerResult:
    """
    Execute operations all-or-nothing.

    Returns:
        LedgerResult with data = list of per-operation results on success.
        On failure: error is WriteFailed (rolled back cleanly) or
        PartialWriteFailure (rollback failed; manual intervention required).
    """
    try:
        validate_operations(operations)
    except InvalidInput as exc:
        return LedgerResult.failure(exc)

    results: list = []
    inserted: list[tuple[str, Any]] = []
    savepoint = db.session.begin_nested()
    released = False

    try:
        for op in operations:
            outcome = _apply(op, results)
            results.append(outcome)
            if op.kind == OP_INSERT:
                inserted.append((op.table, outcome.id))
        savepoint.commit()
        released = True
        if commit:
            db.session.commit()
    except (SQLAlchemyError, LedgerError) as exc:
        failed_at = len(results)
        try:
            if commit:
                db.session.rollback()
            elif not released:
                # a failed flush deactivates the savepoint; rollback still closes it
                savepoint.rollback()
        except Exception as rollback_exc:
            logger.error(
                "Atomic write rollback FAILED; manual intervention required. "
                "operations=%s inserted=%s error=%s rollback_error=%s",
                [op.describe() for op in operations], inserted, exc, rollback_exc,
            )
            return LedgerResult.failure(
                PartialWriteFailure(
                    "Atomic write failed and could not be rolled back",
                    failed_operation=failed_at,
                    operations=[op.describe() for op in operations],
                    inserted=[{"table": t, "id": i} for t, i in inserted],
                    cause=str(exc),
                    rollback_error=str(rollback_exc),
                )
            )

        logger.warning(
            "Atomic write rolled back at operation %d of %d: %s",
            failed_at, len(operations), exc,
        )
        outcome = {
            "rolled_back": True,
            "failed_operation": failed_at,
            "constraint_violation": isinstance(exc, IntegrityError),
        }
        if isinstance(exc, LedgerError):
            return LedgerResult.failure(exc, data=outcome)
        return LedgerResult.failure(
            WriteFailed(
                f"Atomic write failed at operation {failed_at}: {exc.__class__.__name__}",
                **outcome,
            ),
            data=outcome,
        )

    return LedgerResult.success(results)
