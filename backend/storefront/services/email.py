"""
Email Service - transactional email over an HTTP mail API.

Password-reset and order-confirmation messages; transient provider errors
are retried with tenacity.
"""

import logging
from typing import Optional

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception, before_sleep_log

from storefront.config import get_settings

logger = logging.getLogger(__name__)


def is_retryable_error(exception):
    """Return True for transport failures and retryable HTTP errors (429, 5xx)."""
    if isinstance(exception, httpx.HTTPStatusError):
        status = exception.response.status_code
        return status == 429 or status >= 500
    return isinstance(exception, httpx.TransportError)


class EmailService:
    """
    Transactional email over an HTTP mail API (SendGrid v3 payload).
    Without EMAIL_API_KEY messages are logged and skipped.
    """

    def __init__(self, api_key: Optional[str] = None, api_url: Optional[str] = None, sender: Optional[str] = None):
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.EMAIL_API_KEY
        self.api_url = api_url or settings.EMAIL_API_URL
        self.sender = sender or settings.EMAIL_FROM
        self.timeout = settings.GATEWAY_TIMEOUT_SECONDS

    @retry(
        retry=retry_if_exception(is_retryable_error),
        wait=wait_exponential(multiplier=1, min=1, max=30),
        stop=stop_after_attempt(3),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )
    async def _post(self, payload: dict) -> None:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                self.api_url,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
            response.raise_for_status()

    async def send(self, to_email: str, subject: str, html: str) -> bool:
        if not self.api_key:
            logger.info(f"Email delivery disabled; skipped '{subject}' to {to_email}")
            return False

        payload = {
            "personalizations": [{"to": [{"email": to_email}]}],
            "from": {"email": self.sender},
            "subject": subject,
            "content": [{"type": "text/html", "value": html}],
        }
        try:
            await self._post(payload)
        except httpx.HTTPError as e:
            logger.error(f"Email '{subject}' to {to_email} failed: {e}")
            return False

        logger.info(f"Email '{subject}' sent to {to_email}")
        return True

    async def send_password_reset(self, to_email: str, reset_url: str) -> bool:
        html = (
            "<h1>Password Reset Request</h1>"
            "<p>You requested a password reset. Use the link below to set a new password:</p>"
            f'<p><a href="{reset_url}">{reset_url}</a></p>'
            "<p>This link expires in 1 hour. If you did not request it, ignore this email.</p>"
        )
        return await self.send(to_email, "Password Reset Request", html)

    async def send_order_confirmation(self, to_email: str, order_number: str, total: str, currency: str) -> bool:
        html = (
            f"<h1>Thank you for your order</h1>"
            f"<p>Your order <strong>{order_number}</strong> has been received.</p>"
            f"<p>Total: {total} {currency}</p>"
        )
        return await self.send(to_email, f"Order {order_number} received", html)
