# storefront/middleware/__init__.py
"""Request guards shared by the routers."""

from .idempotency import IdempotencyMiddleware, IdempotencyError, RequestInProgress, fingerprint, get_idempotency_middleware

__all__ = ["IdempotencyMiddleware", "IdempotencyError", "RequestInProgress", "fingerprint", "get_idempotency_middleware"]
