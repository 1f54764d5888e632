"""2Checkout (Verifone) REST API client, buy-link signing and IPN verification."""
import hashlib
import hmac
import logging
import time
from typing import Any, Optional
from urllib.parse import urlencode

import requests

from hnvpm.config import get_settings

logger = logging.getLogger(__name__)


def _hmac_sha256(key: str, message: str) -> str:
    return hmac.new(key.encode(), message.encode(), hashlib.sha256).hexdigest()


class TwoCheckoutClient:
    """Thin wrapper over the 2Checkout REST API.

    REST calls never raise: they return ``{"success": True, "data": ...}`` or
    ``{"success": False, "error": "..."}`` so callers can decide whether a
    provider failure should block the local state change.
    """

    def __init__(
        self,
        merchant_code: Optional[str] = None,
        secret_key: Optional[str] = None,
        buy_link_secret_word: Optional[str] = None,
        api_url: Optional[str] = None,
        buy_url: Optional[str] = None,
        timeout: Optional[int] = None,
        session: Optional[requests.Session] = None,
    ):
        settings = get_settings()
        self.merchant_code = merchant_code if merchant_code is not None else settings.TWOCHECKOUT_MERCHANT_CODE
        self.secret_key = secret_key if secret_key is not None else settings.TWOCHECKOUT_SECRET_KEY
        self.buy_link_secret_word = (
            buy_link_secret_word if buy_link_secret_word is not None
            else settings.TWOCHECKOUT_BUY_LINK_SECRET_WORD
        )
        self.api_url = (api_url or settings.TWOCHECKOUT_API_URL).rstrip("/") + "/"
        self.buy_url = buy_url or settings.TWOCHECKOUT_BUY_URL
        self.timeout = timeout or settings.TWOCHECKOUT_TIMEOUT_SECONDS
        self.session = session or requests.Session()

    def auth_headers(self, timestamp: Optional[int] = None) -> dict:
        timestamp = int(time.time()) if timestamp is None else timestamp
        digest = _hmac_sha256(self.secret_key, f"{self.merchant_code}{timestamp}")
        return {
            "X-Avangate-Authentication": f'code="{self.merchant_code}" date="{timestamp}" hash="{digest}"',
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def generate_buy_link(
        self,
        product_id: str,
        customer_email: str,
        customer_name: str,
        currency: str,
        return_url: str,
        cancel_url: str,
        external_reference: str,
        language: str = "en",
    ) -> str:
        params = {
            "merchant-id": self.merchant_code,
            "product-id": product_id,
            "customer-email": customer_email,
            "customer-name": customer_name,
            "currency": currency,
            "return-url": return_url,
            "cancel-url": cancel_url,
            "external-reference": external_reference,
            "language": language,
        }
        query = urlencode(params)
        signature = _hmac_sha256(self.buy_link_secret_word, query)
        return f"{self.buy_url}?{query}&{urlencode({'signature': signature})}"

    def sign_ipn(self, data: dict[str, Any]) -> str:
        message = "&".join(f"{key}={data[key]}" for key in sorted(data))
        return _hmac_sha256(self.secret_key, message)

    def verify_ipn(self, data: dict[str, Any], signature: Optional[str]) -> bool:
        if not signature or not isinstance(data, dict):
            return False
        return hmac.compare_digest(self.sign_ipn(data), signature)

    def _request(self, method: str, path: str, **kwargs) -> dict:
        url = f"{self.api_url}{path}"
        try:
            resp = self.session.request(method, url, headers=self.auth_headers(), timeout=self.timeout, **kwargs)
            resp.raise_for_status()
            return {"success": True, "data": resp.json() if resp.content else {}}
        except requests.exceptions.HTTPError as exc:
            message = None
            try:
                body = exc.response.json()
                if isinstance(body, dict):
                    message = body.get("message")
            except ValueError:
                pass
            logger.error("2Checkout %s %s failed: %s", method, path, message or exc)
            return {"success": False, "error": message or f"2Checkout request failed ({exc.response.status_code})"}
        except requests.exceptions.RequestException as exc:
            logger.error("2Checkout %s %s failed: %s", method, path, exc)
            return {"success": False, "error": "Payment provider unavailable"}

    def get_subscription(self, subscription_id: str) -> dict:
        return self._request("GET", f"subscriptions/{subscription_id}/")

    def cancel_subscription(self, subscription_id: str) -> dict:
        return self._request("DELETE", f"subscriptions/{subscription_id}/")

    def update_subscription(self, subscription_id: str, update_data: dict) -> dict:
        return self._request("PUT", f"subscriptions/{subscription_id}/", json=update_data)

    def get_customer_subscriptions(self, customer_email: str) -> dict:
        return self._request("GET", "subscriptions/", params={"CustomerEmail": customer_email})


def get_twocheckout_client() -> TwoCheckoutClient:
    """FastAPI dependency; overridden in tests."""
    return TwoCheckoutClient()
