# storefront/middleware/idempotency.py
"""
Idempotency guard for checkout.

Browsers double-submit the checkout form and mobile clients retry on flaky
networks. With an Idempotency-Key header, a repeated POST /api/orders gets
the first result back instead of placing a second order.

Stored in Redis per (shopper, endpoint, key):
- a short-lived in-flight lock while the first request runs
- the response plus a fingerprint of the request body, for 24 hours

A key replayed with a different body is rejected rather than answered with
an unrelated order.
"""

import json
import hashlib
import logging
from datetime import timedelta
from typing import Callable, Any, Optional

from storefront.redis import get_redis_client

logger = logging.getLogger(__name__)


class IdempotencyError(Exception):
    """Missing, reused or misused idempotency key."""
    status_code = 400


class RequestInProgress(IdempotencyError):
    """Another request with the same key has not finished yet."""
    status_code = 409


def fingerprint(payload: Any) -> str:
    """Stable hash of a JSON-serializable request body."""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class IdempotencyMiddleware:

    TTL = timedelta(hours=24)
    LOCK_TTL = timedelta(seconds=30)

    def __init__(self, redis_client=None):
        self.redis = redis_client if redis_client is not None else get_redis_client()
        if self.redis is None:
            raise IdempotencyError("Redis is not configured")

    async def ensure_idempotent(
        self,
        key: str,
        owner_id: str,
        endpoint: str,
        handler: Callable,
        *args,
        request_fingerprint: Optional[str] = None,
        before_store: Optional[Callable] = None,
        **kwargs
    ) -> Any:
        """
        Run `handler` once per key; replays return the stored result.

        Args:
            key: Client-provided idempotency key (UUID recommended)
            owner_id: Shopper making the request
            endpoint: API endpoint being called
            handler: Async function returning a JSON-serializable result
            request_fingerprint: fingerprint() of the request body, if it should be checked
            before_store: Async callable run after the handler and before the result is
                stored, e.g. the session commit; if it raises nothing is stored
        """
        if not key:
            raise IdempotencyError("Idempotency-Key header is required for this operation")

        cache_key = self._build_cache_key(key, owner_id, endpoint)

        stored = self._load(cache_key)
        if stored is not None:
            return self._replay(key, stored, request_fingerprint)

        lock_key = f"{cache_key}:lock"
        if not self.redis.set(lock_key, "1", nx=True, ex=int(self.LOCK_TTL.total_seconds())):
            logger.info(f"Idempotency key {key[:8]}... is already being processed")
            raise RequestInProgress("A request with this Idempotency-Key is still being processed")

        try:
            result = await handler(*args, **kwargs)
            if before_store is not None:
                await before_store()
            # Only successful results are stored; a failed attempt may be retried
            self.redis.setex(
                cache_key,
                int(self.TTL.total_seconds()),
                json.dumps({"fingerprint": request_fingerprint, "result": result}, default=str),
            )
        finally:
            self.redis.delete(lock_key)

        logger.debug(f"Stored result for idempotency key {key[:8]}...")
        return result

    def _load(self, cache_key: str) -> Optional[dict]:
        raw = self.redis.get(cache_key)
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning(f"Discarding unreadable idempotency entry {cache_key}")
            self.redis.delete(cache_key)
            return None

    def _replay(self, key: str, stored: dict, request_fingerprint: Optional[str]) -> Any:
        previous = stored.get("fingerprint")
        if request_fingerprint and previous and previous != request_fingerprint:
            logger.warning(f"Idempotency key {key[:8]}... reused with a different request body")
            raise IdempotencyError("Idempotency-Key was already used with a different request")
        logger.info(f"Idempotency cache hit for key {key[:8]}... - returning stored result")
        return stored.get("result")

    def _build_cache_key(self, key: str, owner_id: str, endpoint: str) -> str:
        """Format: idempotency:{owner_id}:{endpoint_hash}:{key}"""
        endpoint_hash = hashlib.sha256(endpoint.encode()).hexdigest()[:8]
        return f"idempotency:{owner_id}:{endpoint_hash}:{key}"

    def check_key_exists(self, key: str, owner_id: str, endpoint: str) -> bool:
        return self.redis.exists(self._build_cache_key(key, owner_id, endpoint)) > 0


_idempotency_middleware = None


def get_idempotency_middleware() -> Optional[IdempotencyMiddleware]:
    """Shared guard instance; None when REDIS_URL is not set."""
    global _idempotency_middleware
    if _idempotency_middleware is None:
        client = get_redis_client()
        if client is None:
            return None
        _idempotency_middleware = IdempotencyMiddleware(client)
    return _idempotency_middleware
