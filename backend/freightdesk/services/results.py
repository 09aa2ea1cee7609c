# Overview: Explicit result types returned by ledger-mutating services.

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from .errors import LedgerError, WriteFailed

logger = logging.getLogger(__name__)


STATUS_COMPLETED = "completed"
STATUS_ALREADY_REFUNDED = "already_refunded"
STATUS_DEGRADED = "degraded"
STATUS_SKIPPED = "skipped"
STATUS_FAILED = "failed"


@dataclass
class LedgerResult:
    """
    Outcome of a ledger-mutating operation.

    ok=False always carries an error; ok=True may still carry a non-default
    status (already_refunded, degraded, skipped) the caller can assert on.
    """
    ok: bool
    data: Any = None
    error: Optional[LedgerError] = None
    status: str = STATUS_COMPLETED

    @classmethod
    def success(cls, data: Any = None, status: str = STATUS_COMPLETED) -> "LedgerResult":
        return cls(ok=True, data=data, status=status)

    @classmethod
    def failure(cls, error: LedgerError, data: Any = None) -> "LedgerResult":
        return cls(ok=False, data=data, error=error, status=STATUS_FAILED)

    @property
    def manual_intervention_required(self) -> bool:
        return bool(self.error is not None and self.error.manual_intervention_required)

    def to_dict(self) -> dict:
        payload: dict = {"ok": self.ok, "status": self.status}
        if self.data is not None:
            payload["data"] = _jsonable(self.data)
        if self.error is not None:
            payload["error"] = self.error.to_dict()
        return payload


@dataclass
class CancellationOutcome:
    """
    Two independent channels: the cancellation itself and the refund
    bookkeeping that follows it. A failed refund never flips the
    cancellation result.
    """
    cancellation: LedgerResult
    refund: Optional[LedgerResult] = None
    extra: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.cancellation.ok

    def to_dict(self) -> dict:
        payload = {
            "success": self.cancellation.ok,
            "cancellation": self.cancellation.to_dict(),
            "refund": self.refund.to_dict() if self.refund is not None else None,
        }
        payload.update(self.extra)
        return payload


def _jsonable(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def ledger_boundary(func):
    """
    Convert LedgerError / SQLAlchemyError raised inside a ledger operation
    into a LedgerResult failure, rolling back the session first.
    """
    @wraps(func)
    def wrapper(*args, **kwargs) -> LedgerResult:
        try:
            return func(*args, **kwargs)
        except LedgerError as exc:
            db.session.rollback()
            logger.warning("%s failed: %s", func.__name__, exc.message)
            return LedgerResult.failure(exc)
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.exception("%s failed in the ledger store", func.__name__)
            return LedgerResult.failure(WriteFailed(f"Ledger store error: {exc.__class__.__name__}"))

    return wrapper
