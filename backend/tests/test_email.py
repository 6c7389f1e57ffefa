"""
Tests for transactional email delivery.
"""

import httpx
import pytest
from unittest.mock import AsyncMock, patch

from storefront.services.email import EmailService, is_retryable_error


def status_error(code):
    request = httpx.Request("POST", "https://mail.example.com/send")
    return httpx.HTTPStatusError("error", request=request, response=httpx.Response(code, request=request))


class TestRetryPolicy:

    @pytest.mark.parametrize("code", [429, 500, 503])
    def test_retryable_status(self, code):
        assert is_retryable_error(status_error(code))

    @pytest.mark.parametrize("code", [400, 401, 404])
    def test_client_errors_are_final(self, code):
        assert not is_retryable_error(status_error(code))

    def test_transport_errors_retry(self):
        assert is_retryable_error(httpx.ConnectError("refused"))
        assert not is_retryable_error(ValueError("boom"))


@pytest.mark.asyncio
async def test_skipped_without_api_key():
    service = EmailService(api_key="")

    with patch.object(EmailService, "_post", new_callable=AsyncMock) as post:
        assert await service.send("a@example.com", "Hello", "<p>Hi</p>") is False

    post.assert_not_called()


@pytest.mark.asyncio
async def test_sends_sendgrid_payload():
    service = EmailService(api_key="key", sender="shop@example.com")

    with patch.object(EmailService, "_post", new_callable=AsyncMock) as post:
        sent = await service.send_order_confirmation("a@example.com", "ORD-240101-0001", "500.00", "INR")

    assert sent is True
    payload = post.call_args[0][0]
    assert payload["personalizations"][0]["to"][0]["email"] == "a@example.com"
    assert payload["from"]["email"] == "shop@example.com"
    assert "ORD-240101-0001" in payload["subject"]


@pytest.mark.asyncio
async def test_delivery_failure_is_reported_not_raised():
    service = EmailService(api_key="key")

    with patch.object(EmailService, "_post", new_callable=AsyncMock, side_effect=status_error(400)):
        assert await service.send("a@example.com", "Hello", "<p>Hi</p>") is False
