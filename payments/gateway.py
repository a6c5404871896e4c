from __future__ import annotations

import functools
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import requests
from django.conf import settings

from core.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)


def _retriable_status(code: int) -> bool:
    return code >= 500 or code == 429


def backoff(retries: Optional[int] = None, base: Optional[float] = None, factor: float = 2.0,
            retriable: Optional[Callable[[int], bool]] = None):
    """
    Retry ``fn`` on network errors and retriable HTTP statuses with exponential delay.

    ``retries`` and ``base`` default to GATEWAY_MAX_RETRIES / GATEWAY_BACKOFF_BASE,
    read when the call is made.
    """
    retriable = retriable or _retriable_status

    def wrapper(fn):
        @functools.wraps(fn)
        def inner(*args, **kwargs):
            attempts = max(1, retries if retries is not None else int(getattr(settings, 'GATEWAY_MAX_RETRIES', 4)))
            delay = base if base is not None else float(getattr(settings, 'GATEWAY_BACKOFF_BASE', 0.5))
            for attempt in range(attempts):
                try:
                    return fn(*args, **kwargs)
                except requests.HTTPError as e:
                    resp = e.response
                    code = resp.status_code if resp is not None else 0
                    if attempt < attempts - 1 and retriable(code):
                        logger.warning("Retrying %s due to HTTP %s in %ss", fn.__name__, code, round(delay, 2))
                        time.sleep(delay)
                        delay *= factor
                        continue
                    raise
                except requests.RequestException:
                    if attempt < attempts - 1:
                        logger.warning("Retrying %s due to network error in %ss", fn.__name__, round(delay, 2))
                        time.sleep(delay)
                        delay *= factor
                        continue
                    raise
        return inner
    return wrapper


@dataclass
class APIResponse:
    ok: bool
    status: int
    data: Any
    error: Optional[str] = None


class BaseClient:
    def __init__(self, base_url: str, headers: Optional[Dict[str, str]] = None, auth=None, timeout: Optional[int] = None):
        self.base_url = base_url.rstrip("/")
        self.session = requests.Session()
        self.session.headers.update(headers or {})
        if auth is not None:
            self.session.auth = auth
        self.timeout = timeout or int(getattr(settings, 'GATEWAY_TIMEOUT_SECONDS', 20))

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    @backoff()
    def _send(self, method: str, path: str, **kwargs) -> requests.Response:
        resp = self.session.request(method, self._url(path), timeout=self.timeout, **kwargs)
        resp.raise_for_status()
        return resp

    def _request(self, method: str, path: str, **kwargs) -> APIResponse:
        """
        One logical call with retries. 4xx answers come back as ``ok=False``;
        exhausted retries on network/5xx errors raise ``ExternalServiceError``.
        """
        url = self._url(path)
        try:
            resp = self._send(method, path, **kwargs)
        except requests.HTTPError as e:
            r = e.response
            code = r.status_code if r is not None else 0
            try:
                payload = r.json()
            except ValueError:
                payload = r.text if r is not None else None
            if _retriable_status(code):
                logger.error("Gateway %s %s failed with HTTP %s: %s", method, url, code, payload)
                raise ExternalServiceError('Payment gateway unavailable.', status=code)
            logger.warning("Gateway %s %s rejected with HTTP %s: %s", method, url, code, payload)
            return APIResponse(False, code, payload, error=_error_description(payload))
        except requests.RequestException as e:
            logger.error("Network error calling %s %s: %s", method, url, e)
            raise ExternalServiceError('Payment gateway unreachable.')

        try:
            data = resp.json()
        except ValueError:
            data = resp.text
        return APIResponse(True, resp.status_code, data)


def _error_description(payload) -> str:
    if isinstance(payload, dict):
        error = payload.get('error') or {}
        if isinstance(error, dict):
            return str(error.get('description') or error.get('code') or payload)
    return str(payload)


class RazorpayClient(BaseClient):
    """Minimal Razorpay REST client: orders and payment capture."""

    ALREADY_CAPTURED = 'already been captured'

    def __init__(self, key_id: Optional[str] = None, key_secret: Optional[str] = None,
                 base_url: Optional[str] = None):
        super().__init__(
            base_url or settings.RAZORPAY_API_BASE,
            headers={"Content-Type": "application/json"},
            auth=(key_id or settings.RAZORPAY_KEY_ID, key_secret or settings.RAZORPAY_KEY_SECRET),
        )

    def create_order(self, amount: int, receipt: str, notes: Optional[dict] = None,
                     currency: Optional[str] = None) -> dict:
        resp = self._request("POST", "/orders", json={
            "amount": amount,
            "currency": currency or settings.PAYMENT_CURRENCY,
            "receipt": receipt,
            "notes": notes or {},
        })
        if not resp.ok:
            raise ExternalServiceError(f'Gateway rejected order creation: {resp.error}', status=resp.status)
        return resp.data

    def capture_payment(self, payment_id: str, amount: int, currency: Optional[str] = None) -> dict:
        """Capture an authorized payment. A payment that is already captured counts as success."""
        resp = self._request("POST", f"/payments/{payment_id}/capture", json={
            "amount": amount,
            "currency": currency or settings.PAYMENT_CURRENCY,
        })
        if resp.ok:
            return resp.data
        if resp.error and self.ALREADY_CAPTURED in resp.error.lower():
            logger.info("Payment %s was already captured", payment_id)
            return {"id": payment_id, "status": "captured"}
        raise ExternalServiceError(f'Gateway rejected capture: {resp.error}', status=resp.status)
