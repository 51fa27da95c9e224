import base64
import json
import unittest
from unittest import mock

import requests

from ledger_fixtures import WEBHOOK_SECRET
from ledger_fixtures import signed_headers as make_signed_headers

from app.core.errors import ExternalServiceError, UnconfiguredError
from app.services.payments.dodo import (
    DodoPaymentsClient,
    WebhookSignatureError,
    parse_payment_event,
    verify_webhook_signature,
)

SECRET = WEBHOOK_SECRET
NOW = 1_760_000_000


def signed_headers(body: bytes, *, timestamp=NOW, secret=SECRET) -> dict:
    return make_signed_headers(body, timestamp=timestamp, secret=secret)


class TestWebhookSignature(unittest.TestCase):
    body = json.dumps({"type": "payment.succeeded", "data": {"payment_id": "tx_1"}}).encode("utf-8")

    def test_valid_signature(self):
        verify_webhook_signature(self.body, signed_headers(self.body), SECRET, now=NOW + 10)

    def test_any_listed_signature_may_match(self):
        headers = signed_headers(self.body)
        headers["webhook-signature"] = "v1,b3V0ZGF0ZWQ= " + headers["webhook-signature"]
        verify_webhook_signature(self.body, headers, SECRET, now=NOW)

    def test_tampered_body_rejected(self):
        headers = signed_headers(self.body)
        with self.assertRaises(WebhookSignatureError):
            verify_webhook_signature(self.body + b" ", headers, SECRET, now=NOW)

    def test_wrong_secret_rejected(self):
        other = "whsec_" + base64.b64encode(b"another-key").decode("ascii")
        with self.assertRaises(WebhookSignatureError):
            verify_webhook_signature(self.body, signed_headers(self.body, secret=other), SECRET, now=NOW)

    def test_stale_timestamp_rejected(self):
        with self.assertRaises(WebhookSignatureError):
            verify_webhook_signature(self.body, signed_headers(self.body), SECRET, now=NOW + 301)

    def test_missing_headers_rejected(self):
        with self.assertRaises(WebhookSignatureError):
            verify_webhook_signature(self.body, {}, SECRET, now=NOW)

    def test_missing_secret_is_a_configuration_error(self):
        with self.assertRaises(UnconfiguredError):
            verify_webhook_signature(self.body, signed_headers(self.body), None, now=NOW)


class TestParsePaymentEvent(unittest.TestCase):
    def test_flat_data(self):
        event = parse_payment_event(
            {
                "type": "payment.succeeded",
                "data": {
                    "payment_id": "tx_1",
                    "currency": "EUR",
                    "total_amount": 1299,
                    "metadata": {"user_id": "u1", "package_id": "pkg", "credits": "120"},
                },
            }
        )
        self.assertEqual(event.event_type, "payment.succeeded")
        self.assertEqual(event.payment_id, "tx_1")
        self.assertEqual(event.currency, "EUR")
        self.assertEqual(event.amount_minor, 1299)
        self.assertEqual(event.user_id, "u1")
        self.assertEqual(event.package_id, "pkg")
        self.assertEqual(event.credits, 120)

    def test_nested_payment_and_defaults(self):
        event = parse_payment_event({"type": "payment.succeeded", "data": {"payment": {"payment_id": "tx_9"}}})
        self.assertEqual(event.payment_id, "tx_9")
        self.assertEqual(event.currency, "USD")
        self.assertEqual(event.amount_minor, 0)
        self.assertEqual(event.user_id, "")
        self.assertIsNone(event.credits)

    def test_unparseable_credits(self):
        event = parse_payment_event({"type": "payment.succeeded", "metadata": {"credits": "lots"}})
        self.assertIsNone(event.credits)
        event = parse_payment_event({"type": "payment.succeeded", "metadata": {"credits": True}})
        self.assertIsNone(event.credits)


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class TestDodoPaymentsClient(unittest.TestCase):
    def setUp(self):
        self.client = DodoPaymentsClient(api_key="sk_test", base_url="https://test.dodopayments.com/")

    def create(self):
        return self.client.create_checkout_session(
            product_id="prod_1",
            customer_email="user@example.com",
            customer_name="Test User",
            billing_country="US",
            return_url="http://localhost:3000/payments/return",
            metadata={"user_id": "u1", "package_id": "pkg", "credits": "50", "source": "infographic-ai"},
        )

    def test_creates_session(self):
        with mock.patch("app.services.payments.dodo.requests.post") as post:
            post.return_value = FakeResponse(200, {"checkout_url": "https://pay.test/cs_1", "session_id": "cs_1"})
            session = self.create()

        self.assertEqual(session.url, "https://pay.test/cs_1")
        self.assertEqual(session.session_id, "cs_1")
        args, kwargs = post.call_args
        self.assertEqual(args[0], "https://test.dodopayments.com/checkouts")
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer sk_test")
        self.assertEqual(kwargs["json"]["product_cart"], [{"product_id": "prod_1", "quantity": 1}])
        self.assertEqual(kwargs["json"]["metadata"]["credits"], "50")

    def test_provider_error(self):
        with mock.patch("app.services.payments.dodo.requests.post") as post:
            post.return_value = FakeResponse(500, {"message": "nope"})
            with self.assertRaises(ExternalServiceError):
                self.create()

    def test_missing_url(self):
        with mock.patch("app.services.payments.dodo.requests.post") as post:
            post.return_value = FakeResponse(200, {"session_id": "cs_1"})
            with self.assertRaises(ExternalServiceError):
                self.create()

    def test_network_error(self):
        with mock.patch("app.services.payments.dodo.requests.post", side_effect=requests.ConnectionError("down")):
            with self.assertRaises(ExternalServiceError) as ctx:
                self.create()
        self.assertEqual(ctx.exception.kind, "transient")


if __name__ == "__main__":
    unittest.main()
