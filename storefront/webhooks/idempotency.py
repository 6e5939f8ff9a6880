"""Webhook delivery dedup: Redis-based.

Printful retries a delivery until it gets a 2xx, so the same body can
arrive more than once. Deliveries are keyed by provider + SHA-256 of the
raw body and remembered for 24h.

Contract:
- Key pattern: webhook:seen:{provider}:{digest}
- SET NX EX is the atomic check-and-mark
- Duplicates are acknowledged with 200, never reprocessed
- Redis down -> fail open (deliver); the engine's shipped-guard still
  prevents a second notification
"""

from __future__ import annotations

import hashlib
import logging

import redis

logger = logging.getLogger(__name__)

_DEDUP_TTL_SECONDS = 86400  # 24 hours

_KEY_PREFIX = "webhook:seen"


def delivery_id(body: bytes) -> str:
    return hashlib.sha256(body).hexdigest()


class WebhookDeduplicator:
    """Remembers webhook deliveries that were already processed."""

    def __init__(self, client: redis.Redis | None = None, redis_url: str = ""):
        self._client = client
        self._redis_url = redis_url

    def _get_redis(self) -> redis.Redis | None:
        if self._client is None and self._redis_url:
            self._client = redis.from_url(self._redis_url, decode_responses=True)
        return self._client

    def _key(self, provider: str, webhook_id: str) -> str:
        return f"{_KEY_PREFIX}:{provider}:{webhook_id}"

    def is_duplicate(self, provider: str, webhook_id: str) -> bool:
        """Check-and-mark. True if this delivery was already seen."""
        if not webhook_id:
            return False

        try:
            r = self._get_redis()
            if r is None:
                return False
            was_set = r.set(self._key(provider, webhook_id), "1", nx=True, ex=_DEDUP_TTL_SECONDS)
            if not was_set:
                logger.info("Duplicate webhook rejected: %s/%s", provider, webhook_id[:12])
                return True
            return False
        except redis.RedisError:
            logger.warning(
                "Redis unavailable for webhook dedup; allowing %s/%s",
                provider,
                webhook_id[:12],
                exc_info=True,
            )
            return False

    def forget(self, provider: str, webhook_id: str) -> None:
        """Drop a mark so a redelivery is processed again (after a failed run)."""
        if not webhook_id:
            return
        try:
            r = self._get_redis()
            if r is not None:
                r.delete(self._key(provider, webhook_id))
        except redis.RedisError:
            logger.warning("Failed to clear webhook mark: %s/%s", provider, webhook_id[:12])
