"""
Thin client for the Cashfree payment gateway (PG orders API).

Only the calls the checkout flow needs: create an order, read it back, and
list the payment attempts made against it.
"""

import logging
from typing import List

import requests
from fastapi import Request

from errors import PaymentProviderError
from settings import Settings

logger = logging.getLogger(__name__)

PAID = "PAID"


class CashfreeClient:
    def __init__(self, app_id: str, secret_key: str, api_url: str,
                 api_version: str = "2023-08-01", timeout: float = 15, session=None):
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "x-client-id": app_id or "",
            "x-client-secret": secret_key or "",
            "x-api-version": api_version,
            "Accept": "application/json",
        })

    @classmethod
    def from_settings(cls, settings: Settings) -> "CashfreeClient":
        return cls(
            settings.cashfree_app_id,
            settings.cashfree_secret_key,
            settings.cashfree_api_url,
            settings.cashfree_api_version,
        )

    def _request(self, method: str, path: str, **kwargs):
        url = f"{self.api_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            logger.error("Cashfree %s %s failed: %s", method, path, exc)
            raise PaymentProviderError("Payment provider unavailable")
        try:
            data = response.json()
        except ValueError:
            logger.error("Cashfree %s %s returned non-JSON (status %s)", method, path, response.status_code)
            raise PaymentProviderError("Invalid response from payment provider")
        if not response.ok:
            message = data.get("message") if isinstance(data, dict) else None
            logger.error("Cashfree %s %s rejected (status %s): %s", method, path, response.status_code, data)
            raise PaymentProviderError(message or "Payment provider rejected the request", provider_response=data)
        return data

    def create_order(self, payload: dict) -> dict:
        return self._request("POST", "/orders", json=payload)

    def get_order(self, order_id: str) -> dict:
        data = self._request("GET", f"/orders/{order_id}")
        if not isinstance(data, dict):
            raise PaymentProviderError("Invalid response from payment provider")
        return data

    def get_payments(self, order_id: str) -> List[dict]:
        data = self._request("GET", f"/orders/{order_id}/payments")
        return data if isinstance(data, list) else []


def get_provider(request: Request) -> CashfreeClient:
    return request.app.state.provider
