# Overview: HTTP client for the RapidDeals carrier API (cancel, order info, place order).

"""
Carrier API Client

WHY: Cancellation and status sync both depend on the carrier's view of an
order. The client owns the transport details (auth headers, form encoding,
retry policy) so the order service only sees plain dicts.

RETRIES: connection-class errors only (httpx.TransportError), at most
EXTERNAL_API_MAX_RETRIES retries with min(2**n, cap) second backoff.
HTTP error statuses are never retried.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
from flask import current_app

from .concurrency import call_with_backoff
from .errors import ExternalApiError

logger = logging.getLogger(__name__)


# Carrier orderStatus -> local order status
CARRIER_STATUS_MAP = {
    "check pending": "pending_review",
    "Approval rejection": "rejected",
    "To be picked": "confirmed",
    "In-Transit": "in_transit",
    "Delivered": "delivered",
    "Cancelled": "cancelled",
    "Reject": "exception",
}


def map_carrier_status(carrier_status: Optional[str]) -> str:
    if not carrier_status:
        return "pending_review"
    if carrier_status in CARRIER_STATUS_MAP:
        return CARRIER_STATUS_MAP[carrier_status]
    return "_".join(carrier_status.lower().split())


def _is_success_shaped_message(payload: dict) -> bool:
    """
    Compatibility shim: the carrier sometimes reports a completed cancel
    with only msg == "success" and no structured success flag.
    """
    msg = payload.get("msg")
    return isinstance(msg, str) and msg.strip().lower() == "success"


def is_cancel_success(payload: dict) -> bool:
    if payload.get("code") in (200, "200"):
        return True
    if payload.get("success") is True or payload.get("success") == "true":
        return True
    return _is_success_shaped_message(payload)


@dataclass
class CancelResult:
    ok: bool
    audit_remark: Optional[str] = None
    message: Optional[str] = None
    raw: dict = field(default_factory=dict)


class RapidDealsClient:
    def __init__(
        self,
        base_url: str,
        api_id: str = "",
        api_key: str = "",
        *,
        timeout: float = 30.0,
        max_retries: int = 3,
        max_backoff: float = 5.0,
        transport: Optional[httpx.BaseTransport] = None,
        sleep=None,
    ):
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.max_backoff = max_backoff
        self._sleep = sleep
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"api_id": api_id, "user_key": api_key},
        )

    @classmethod
    def from_config(cls, config=None, **kwargs) -> "RapidDealsClient":
        config = config or current_app.config
        return cls(
            config["RAPIDDEALS_API_URL"],
            config.get("RAPIDDEALS_API_ID", ""),
            config.get("RAPIDDEALS_API_KEY", ""),
            timeout=config.get("EXTERNAL_API_TIMEOUT_SECONDS", 30.0),
            max_retries=config.get("EXTERNAL_API_MAX_RETRIES", 3),
            max_backoff=config.get("EXTERNAL_API_MAX_BACKOFF_SECONDS", 5.0),
            **kwargs,
        )

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, **kwargs) -> dict:
        retry_kwargs: dict[str, Any] = {
            "max_retries": self.max_retries,
            "max_backoff": self.max_backoff,
            "label": f"carrier {method} {path}",
        }
        if self._sleep is not None:
            retry_kwargs["sleep"] = self._sleep

        try:
            response = call_with_backoff(lambda: self._client.request(method, path, **kwargs), **retry_kwargs)
        except httpx.TransportError as exc:
            raise ExternalApiError("Carrier API unreachable", cause=exc.__class__.__name__)

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if response.status_code >= 400:
            logger.error("Carrier API %s %s returned %s", method, path, response.status_code)
            message = payload.get("msg") if isinstance(payload, dict) else None
            raise ExternalApiError(
                message or f"Carrier API returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        if not isinstance(payload, dict):
            raise ExternalApiError("Carrier API returned an unexpected payload")
        return payload

    def cancel_order(self, order_number: str, reason: Optional[str] = None) -> CancelResult:
        form = {"orderId": order_number}
        if reason:
            form["reason"] = reason
        payload = self._request("POST", "/cancelOrder", data=form)
        data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
        ok = is_cancel_success(payload)
        if not ok:
            logger.warning("Carrier refused cancel of %s: %s", order_number, payload.get("msg"))
        return CancelResult(
            ok=ok,
            audit_remark=data.get("auditRemark"),
            message=payload.get("msg"),
            raw=payload,
        )

    def order_info(self, carrier_order_id: str) -> dict:
        """Order snapshot; the carrier nests it under "data" on most responses."""
        payload = self._request("GET", "/orderInfo", params={"orderId": carrier_order_id})
        data = payload.get("data")
        return data if isinstance(data, dict) else payload

    def place_order(self, order_payload: dict) -> dict:
        payload = self._request("POST", "/placeOrder", json=order_payload)
        if payload.get("code") not in (200, "200") and not payload.get("success"):
            raise ExternalApiError(payload.get("msg") or "Failed to place order with carrier")
        return payload


@contextmanager
def carrier_session():
    """Client for the current app; CARRIER_CLIENT_FACTORY overrides the default."""
    factory = current_app.config.get("CARRIER_CLIENT_FACTORY")
    client = factory() if factory else RapidDealsClient.from_config()
    try:
        yield client
    finally:
        close = getattr(client, "close", None)
        if close:
            close()
