from __future__ import annotations

import logging
from typing import Optional

import redis

from faucet.domain.claims import ClaimRecord, ClaimState, Reserved, ReserveResult, evaluate
from faucet.domain.errors import StoreError
from faucet.store.base import ClaimStore

logger = logging.getLogger(__name__)


class RedisClaimStore(ClaimStore):
    """
    Claim records as JSON strings under ``{prefix}{identity}``.
    Committed keys expire after the cooldown, reserved keys after the
    reservation timeout, so Redis does the garbage collection.
    Reservation uses WATCH/MULTI: the transaction aborts and retries if the
    key changes between the read and the write.
    """

    backend = "redis"

    def __init__(
        self,
        client: redis.Redis,
        cooldown_ms: int,
        reservation_timeout_ms: int,
        key_prefix: str = "faucet:claim:",
    ):
        super().__init__(cooldown_ms, reservation_timeout_ms)
        self.client = client
        self.key_prefix = key_prefix

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisClaimStore":
        return cls(redis.from_url(url, decode_responses=True), **kwargs)

    def _key(self, identity: str) -> str:
        return f"{self.key_prefix}{identity}"

    def _decode(self, identity: str, raw: Optional[str]) -> Optional[ClaimRecord]:
        if not raw:
            return None
        try:
            return ClaimRecord.from_json(identity, raw)
        except (ValueError, KeyError, TypeError) as e:
            raise StoreError(f"corrupt claim record for {identity}: {raw!r}") from e

    def get(self, identity: str) -> Optional[ClaimRecord]:
        try:
            raw = self.client.get(self._key(identity))
        except redis.RedisError as e:
            raise StoreError(f"redis get failed: {e}") from e
        return self._decode(identity, raw)

    def try_reserve(self, identity: str, now_ms: int) -> ReserveResult:
        key = self._key(identity)

        def _reserve(pipe) -> ReserveResult:
            existing = self._decode(identity, pipe.get(key))
            result = evaluate(
                existing, identity, now_ms,
                self.cooldown_ms, self.reservation_timeout_ms,
            )
            if isinstance(result, Reserved):
                pipe.multi()
                pipe.set(key, result.record.to_json(), px=max(self.reservation_timeout_ms, 1))
            return result

        try:
            return self.client.transaction(_reserve, key, value_from_callable=True)
        except redis.RedisError as e:
            raise StoreError(f"redis reserve failed: {e}") from e

    def commit(self, identity: str, now_ms: int, token: Optional[str] = None) -> None:
        record = ClaimRecord(identity, now_ms, ClaimState.COMMITTED)
        try:
            self.client.set(self._key(identity), record.to_json(), px=max(self.cooldown_ms, 1))
        except redis.RedisError as e:
            raise StoreError(f"redis commit failed: {e}") from e

    def release(self, identity: str, now_ms: int, token: Optional[str] = None) -> None:
        key = self._key(identity)

        def _release(pipe) -> None:
            cur = self._decode(identity, pipe.get(key))
            if cur is None or not cur.is_reserved:
                return
            if token and cur.token != token:
                return
            prev = cur.restored()
            ttl_ms = 0
            if prev is not None:
                ttl_ms = prev.last_claim_at + self.cooldown_ms - now_ms
            pipe.multi()
            if prev is not None and ttl_ms > 0:
                pipe.set(key, prev.to_json(), px=ttl_ms)
            else:
                pipe.delete(key)

        try:
            self.client.transaction(_release, key)
        except redis.RedisError as e:
            raise StoreError(f"redis release failed: {e}") from e

    def close(self) -> None:
        self.client.close()
