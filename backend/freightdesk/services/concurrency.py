# Overview: Retry helpers for ledger-store contention and outbound API calls.

from __future__ import annotations

import logging
import time

import httpx
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

logger = logging.getLogger(__name__)


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts).
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def backoff_delay(retry_number: int, *, base: float = 1.0, cap: float = 5.0) -> float:
    """Exponential backoff: base * 2**n seconds, capped."""
    return min(base * (2 ** retry_number), cap)


def call_with_backoff(
    func,
    *,
    max_retries: int = 3,
    max_backoff: float = 5.0,
    label: str = "external call",
    sleep=time.sleep,
):
    """
    Call an outbound HTTP operation, retrying only connection-class errors.

    httpx.TransportError covers connect/read timeouts, refused and reset
    connections. HTTP error statuses are returned to the caller, not retried.
    """
    retry = 0
    while True:
        try:
            return func()
        except httpx.TransportError as exc:
            if retry >= max_retries:
                logger.error("%s failed after %d retries: %s", label, retry, exc)
                raise
            delay = backoff_delay(retry, cap=max_backoff)
            retry += 1
            logger.warning(
                "%s connection error (%s); retry %d of %d in %.1fs",
                label, exc.__class__.__name__, retry, max_retries, delay,
            )
            sleep(delay)
