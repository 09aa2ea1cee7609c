# Overview: HTTP client for the Loadsure cargo insurance API (purchase, cancel certificate).

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Optional

import httpx
from flask import current_app

from .concurrency import call_with_backoff
from .errors import ExternalApiError

logger = logging.getLogger(__name__)


class LoadsureClient:
    """Bearer-key JSON client; same retry policy as the carrier client."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        *,
        timeout: float = 30.0,
        max_retries: int = 3,
        max_backoff: float = 5.0,
        transport: Optional[httpx.BaseTransport] = None,
        sleep=None,
    ):
        self.api_key = api_key
        self.max_retries = max_retries
        self.max_backoff = max_backoff
        self._sleep = sleep
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={"Authorization": f"Bearer {api_key}"},
        )

    @classmethod
    def from_config(cls, config=None, **kwargs) -> "LoadsureClient":
        config = config or current_app.config
        return cls(
            config["LOADSURE_API_URL"],
            config.get("LOADSURE_API_KEY", ""),
            timeout=config.get("EXTERNAL_API_TIMEOUT_SECONDS", 30.0),
            max_retries=config.get("EXTERNAL_API_MAX_RETRIES", 3),
            max_backoff=config.get("EXTERNAL_API_MAX_BACKOFF_SECONDS", 5.0),
            **kwargs,
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def close(self) -> None:
        self._client.close()

    def _post(self, path: str, body: dict) -> dict:
        retry_kwargs: dict[str, Any] = {
            "max_retries": self.max_retries,
            "max_backoff": self.max_backoff,
            "label": f"insurance POST {path}",
        }
        if self._sleep is not None:
            retry_kwargs["sleep"] = self._sleep

        try:
            response = call_with_backoff(lambda: self._client.post(path, json=body), **retry_kwargs)
        except httpx.TransportError as exc:
            raise ExternalApiError("Insurance API unreachable", cause=exc.__class__.__name__)

        if response.status_code >= 400:
            logger.error("Insurance API %s returned %s", path, response.status_code)
            raise ExternalApiError(
                f"Insurance API returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError:
            raise ExternalApiError("Insurance API returned invalid JSON")
        if not isinstance(payload, dict):
            raise ExternalApiError("Insurance API returned an unexpected payload")
        return payload

    def purchase(
        self,
        quote_token: str,
        *,
        send_emails_to: Optional[list] = None,
        po_number: Optional[str] = None,
    ) -> dict:
        body = {"quoteToken": quote_token, "sendEmailsTo": send_emails_to or ["USER"]}
        if po_number:
            body["poNumber"] = po_number
        return self._post("/api/insureLoad/purchaseQuote", body)

    def cancel_certificate(
        self,
        certificate_number: str,
        reason: str,
        *,
        additional_info: Optional[str] = None,
        user_id: Optional[int] = None,
        email_assured: bool = False,
    ) -> dict:
        body = {
            "certificateNumber": certificate_number,
            "cancellationReason": reason,
            "emailAssured": email_assured,
        }
        if additional_info:
            body["cancellationAdditionalInfo"] = additional_info
        if user_id is not None:
            body["userId"] = str(user_id)
        return self._post("/api/insureLoad/cancelCertificate", body)


@contextmanager
def insurance_session():
    """Client for the current app; INSURANCE_CLIENT_FACTORY overrides the default."""
    factory = current_app.config.get("INSURANCE_CLIENT_FACTORY")
    client = factory() if factory else LoadsureClient.from_config()
    try:
        yield client
    finally:
        close = getattr(client, "close", None)
        if close:
            close()
