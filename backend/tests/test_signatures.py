"""
Tests for the gateway and identity-provider signature schemes.
"""

import base64
import hashlib
import hmac
import json

import pytest

from storefront.adapters import signatures
from storefront.adapters.razorpay import RazorpayGatewayAdapter
from storefront.exceptions import SignatureMismatch, ValidationFailed

SECRET = "test_key_secret"
SVIX_SECRET = "whsec_" + base64.b64encode(b"svix-signing-key").decode()


class TestPaymentSignature:

    def test_matches_reference_hmac(self):
        expected = hmac.new(SECRET.encode(), b"order_abc|pay_xyz", hashlib.sha256).hexdigest()
        assert signatures.payment_signature("order_abc", "pay_xyz", SECRET) == expected

    def test_is_deterministic(self):
        first = signatures.payment_signature("order_abc", "pay_xyz", SECRET)
        second = signatures.payment_signature("order_abc", "pay_xyz", SECRET)
        assert first == second

    def test_valid_signature_verifies(self):
        signature = signatures.payment_signature("order_abc", "pay_xyz", SECRET)
        assert signatures.verify_payment_signature("order_abc", "pay_xyz", signature, SECRET)

    def test_any_single_character_mutation_is_rejected(self):
        signature = signatures.payment_signature("order_abc", "pay_xyz", SECRET)
        for index in range(len(signature)):
            replacement = "0" if signature[index] != "0" else "1"
            mutated = signature[:index] + replacement + signature[index + 1:]
            assert not signatures.verify_payment_signature("order_abc", "pay_xyz", mutated, SECRET)

    def test_swapped_ids_are_rejected(self):
        signature = signatures.payment_signature("order_abc", "pay_xyz", SECRET)
        assert not signatures.verify_payment_signature("pay_xyz", "order_abc", signature, SECRET)

    def test_missing_signature_is_rejected(self):
        assert not signatures.verify_payment_signature("order_abc", "pay_xyz", None, SECRET)
        assert not signatures.verify_payment_signature("order_abc", "pay_xyz", "", SECRET)


class TestWebhookSignature:

    def test_valid_body_verifies(self):
        body = b'{"event":"payment.captured"}'
        signature = signatures.webhook_signature(body, SECRET)
        assert signatures.verify_webhook_signature(body, signature, SECRET)

    def test_body_mutated_after_signing_is_rejected(self):
        body = b'{"event":"payment.captured","amount":50000}'
        signature = signatures.webhook_signature(body, SECRET)
        tampered = b'{"event":"payment.captured","amount":50001}'
        assert not signatures.verify_webhook_signature(tampered, signature, SECRET)

    def test_wrong_secret_is_rejected(self):
        body = b"{}"
        signature = signatures.webhook_signature(body, "another-secret")
        assert not signatures.verify_webhook_signature(body, signature, SECRET)


class TestSvixSignature:

    def _headers(self, body: bytes, timestamp: int, msg_id: str = "msg_1") -> dict:
        sig = signatures.svix_signature(msg_id, str(timestamp), body, SVIX_SECRET)
        return {"svix-id": msg_id, "svix-timestamp": str(timestamp), "svix-signature": f"v1,{sig}"}

    def test_valid_signature_verifies(self):
        body = b'{"type":"user.created"}'
        headers = self._headers(body, 1_700_000_000)
        assert signatures.verify_svix_signature(body, headers, SVIX_SECRET, now=1_700_000_010)

    def test_rotated_keys_header_accepts_any_match(self):
        body = b'{"type":"user.created"}'
        headers = self._headers(body, 1_700_000_000)
        headers["svix-signature"] = "v1,bm90LXRoZS1zaWduYXR1cmU= " + headers["svix-signature"]
        assert signatures.verify_svix_signature(body, headers, SVIX_SECRET, now=1_700_000_000)

    def test_stale_timestamp_is_rejected(self):
        body = b'{"type":"user.created"}'
        headers = self._headers(body, 1_700_000_000)
        assert not signatures.verify_svix_signature(body, headers, SVIX_SECRET, now=1_700_000_000 + 301)

    def test_tampered_body_is_rejected(self):
        headers = self._headers(b'{"type":"user.created"}', 1_700_000_000)
        assert not signatures.verify_svix_signature(b'{"type":"user.deleted"}', headers, SVIX_SECRET, now=1_700_000_000)

    def test_missing_headers_are_rejected(self):
        assert not signatures.verify_svix_signature(b"{}", {}, SVIX_SECRET)


class TestRazorpayWebhookParsing:

    def _adapter(self):
        return RazorpayGatewayAdapter(key_id="rzp_test", key_secret=SECRET, webhook_secret="hook_secret")

    def test_parses_verified_event(self):
        body = json.dumps({"event": "payment.failed", "payload": {"payment": {"entity": {"id": "pay_1"}}}}).encode()
        event = self._adapter().parse_webhook(body, signatures.webhook_signature(body, "hook_secret"))

        assert event.event_type == "payment.failed"
        assert event.payload["payment"]["entity"]["id"] == "pay_1"

    def test_rejects_before_parsing(self):
        with pytest.raises(SignatureMismatch):
            self._adapter().parse_webhook(b"not json at all", "deadbeef")

    def test_signed_garbage_is_a_validation_error(self):
        body = b"not json at all"
        with pytest.raises(ValidationFailed):
            self._adapter().parse_webhook(body, signatures.webhook_signature(body, "hook_secret"))
