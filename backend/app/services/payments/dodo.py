from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Mapping

import requests

from app.core.errors import ExternalServiceError, UnconfiguredError
from app.core.settings import settings

logger = logging.getLogger(__name__)

PAYMENT_SUCCEEDED = "payment.succeeded"


class WebhookSignatureError(RuntimeError):
    pass


@dataclass(frozen=True)
class CheckoutSession:
    url: str
    session_id: str | None = None


@dataclass(frozen=True)
class PaymentEvent:
    event_type: str
    payment_id: str
    currency: str
    amount_minor: int
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def user_id(self) -> str:
        return str(self.metadata.get("user_id") or "").strip()

    @property
    def package_id(self) -> str | None:
        value = str(self.metadata.get("package_id") or "").strip()
        return value or None

    @property
    def credits(self) -> int | None:
        raw = self.metadata.get("credits")
        if isinstance(raw, bool):
            return None
        if isinstance(raw, (int, float)):
            return int(raw)
        try:
            return int(str(raw).strip())
        except (TypeError, ValueError):
            return None

    def snapshot(self) -> dict[str, Any]:
        return {
            "payment_id": self.payment_id,
            "currency": self.currency,
            "total_amount": self.amount_minor,
            "metadata": dict(self.metadata),
            "type": self.event_type,
        }


def pick(payload: Mapping[str, Any], paths: list[str], default: Any = None) -> Any:
    for path in paths:
        cur: Any = payload
        ok = True
        for part in path.split("."):
            if isinstance(cur, Mapping) and part in cur:
                cur = cur[part]
            else:
                ok = False
                break
        if ok and cur is not None:
            return cur
    return default


def parse_payment_event(payload: Mapping[str, Any]) -> PaymentEvent:
    """Normalise a verified webhook payload.

    The provider nests payment fields under ``data`` (and sometimes
    ``data.payment``) depending on the API version, so every field is looked
    up along all known paths.
    """
    event_type = str(pick(payload, ["type", "event_type", "data.type", "data.event_type"], "") or "")
    payment_id = str(pick(payload, ["payment_id", "data.payment_id", "data.payment.payment_id"], "") or "").strip()
    currency = str(pick(payload, ["currency", "data.currency", "data.payment.currency"], "USD") or "USD")
    raw_amount = pick(payload, ["total_amount", "data.total_amount", "data.payment.total_amount"], 0)
    try:
        amount_minor = int(raw_amount or 0)
    except (TypeError, ValueError):
        amount_minor = 0
    metadata = pick(payload, ["metadata", "data.metadata", "data.payment.metadata"], {}) or {}
    if not isinstance(metadata, Mapping):
        metadata = {}
    return PaymentEvent(
        event_type=event_type,
        payment_id=payment_id,
        currency=currency,
        amount_minor=amount_minor,
        metadata=dict(metadata),
    )


def _signing_key(secret: str) -> bytes:
    raw = (secret or "").strip()
    if raw.startswith("whsec_"):
        raw = raw[len("whsec_") :]
    try:
        return base64.b64decode(raw)
    except (ValueError, TypeError):
        return raw.encode("utf-8")


def sign_webhook(raw_body: bytes, *, webhook_id: str, timestamp: str, secret: str) -> str:
    signed = f"{webhook_id}.{timestamp}.".encode("utf-8") + raw_body
    digest = hmac.new(_signing_key(secret), signed, hashlib.sha256).digest()
    return "v1," + base64.b64encode(digest).decode("ascii")


def verify_webhook_signature(
    raw_body: bytes,
    headers: Mapping[str, str],
    secret: str | None,
    *,
    tolerance_s: int = 300,
    now: float | None = None,
) -> None:
    """Standard Webhooks verification (``webhook-id/-timestamp/-signature``)."""
    if not secret:
        raise UnconfiguredError("DODO_PAYMENTS_WEBHOOK_SECRET is not configured")
    webhook_id = str(headers.get("webhook-id") or "").strip()
    timestamp = str(headers.get("webhook-timestamp") or "").strip()
    signature_header = str(headers.get("webhook-signature") or "").strip()
    if not webhook_id or not timestamp or not signature_header:
        raise WebhookSignatureError("Missing webhook signature headers")

    try:
        ts = int(timestamp)
    except ValueError:
        raise WebhookSignatureError("Invalid webhook timestamp")
    current = time.time() if now is None else now
    if abs(current - ts) > tolerance_s:
        raise WebhookSignatureError("Webhook timestamp outside tolerance")

    expected = sign_webhook(raw_body, webhook_id=webhook_id, timestamp=timestamp, secret=secret)
    for candidate in signature_header.split():
        if hmac.compare_digest(candidate.strip(), expected):
            return
    raise WebhookSignatureError("Invalid webhook signature")


class DodoPaymentsClient:
    def __init__(self, *, api_key: str, base_url: str, timeout_s: float = 30.0) -> None:
        self._api_key = (api_key or "").strip()
        self._base_url = (base_url or "").rstrip("/")
        self._timeout_s = timeout_s

    def create_checkout_session(
        self,
        *,
        product_id: str,
        customer_email: str,
        customer_name: str | None,
        billing_country: str,
        return_url: str,
        metadata: dict[str, str],
    ) -> CheckoutSession:
        customer: dict[str, Any] = {"email": customer_email}
        if customer_name:
            customer["name"] = customer_name
        payload: dict[str, Any] = {
            "product_cart": [{"product_id": product_id, "quantity": 1}],
            "customer": customer,
            "billing_address": {"country": billing_country},
            "minimal_address": True,
            "return_url": return_url,
            "allowed_payment_method_types": ["credit", "debit", "apple_pay", "google_pay"],
            "metadata": metadata,
            "feature_flags": {
                "allow_customer_editing_email": True,
                "allow_customer_editing_country": True,
                "allow_discount_code": False,
            },
        }
        try:
            resp = requests.post(
                f"{self._base_url}/checkouts",
                headers={
                    "Accept": "application/json",
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {self._api_key}",
                },
                json=payload,
                timeout=self._timeout_s,
            )
        except requests.RequestException as e:
            raise ExternalServiceError(f"Dodo checkout request failed: {e}", service="dodo", kind="transient")
        if resp.status_code >= 400:
            raise ExternalServiceError(f"Dodo Payments error ({resp.status_code})", service="dodo")
        try:
            data = resp.json() or {}
        except ValueError:
            data = {}
        url = str(data.get("checkout_url") or data.get("url") or "")
        if not url:
            raise ExternalServiceError("Failed to create checkout session", service="dodo")
        session_id = data.get("session_id") or data.get("id")
        logger.info("dodo.checkout.created session_id=%s product_id=%s", session_id, product_id)
        return CheckoutSession(url=url, session_id=(str(session_id) if session_id else None))


def get_payments_client() -> DodoPaymentsClient:
    if not settings.dodo_api_key or not settings.dodo_return_url:
        raise UnconfiguredError("Server misconfiguration: missing Dodo Payments settings")
    return DodoPaymentsClient(api_key=settings.dodo_api_key, base_url=settings.dodo_base_url)
