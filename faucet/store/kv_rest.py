"""
Claim store on a managed, Redis-compatible key-value service reached over
HTTPS (Upstash / Vercel KV REST wire format).

Each command is POSTed as a JSON array, e.g. ``["SET", key, value, "PX", ttl]``,
with a bearer token; the reply is ``{"result": ...}`` or ``{"error": ...}``.
The service has no WATCH, so conditional writes go through a small EVAL
script that swaps the value only if it still equals what we read.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional

import httpx

from faucet.domain.claims import ClaimRecord, ClaimState, Rejected, ReserveResult, evaluate
from faucet.domain.errors import StoreError
from faucet.store.base import ClaimStore

logger = logging.getLogger(__name__)

# KEYS[1]=key ARGV[1]=expected ('' for absent) ARGV[2]=new ('' to delete) ARGV[3]=ttl ms
CAS_SCRIPT = """
local cur = redis.call('GET', KEYS[1])
if cur == false then cur = '' end
if cur ~= ARGV[1] then return 0 end
if ARGV[2] == '' then
  redis.call('DEL', KEYS[1])
else
  redis.call('SET', KEYS[1], ARGV[2], 'PX', ARGV[3])
end
return 1
"""

MAX_CAS_ATTEMPTS = 5


class KVRestClaimStore(ClaimStore):
    backend = "kv"

    def __init__(
        self,
        url: str,
        token: str,
        cooldown_ms: int,
        reservation_timeout_ms: int,
        key_prefix: str = "faucet:claim:",
        client: Optional[httpx.Client] = None,
        timeout: float = 5.0,
    ):
        super().__init__(cooldown_ms, reservation_timeout_ms)
        self.url = url.rstrip("/")
        self.key_prefix = key_prefix
        self.client = client or httpx.Client(timeout=timeout)
        self._headers = {"Authorization": f"Bearer {token}"}

    def _key(self, identity: str) -> str:
        return f"{self.key_prefix}{identity}"

    def _command(self, *args: Any) -> Any:
        payload: List[str] = [str(a) for a in args]
        try:
            response = self.client.post(self.url, json=payload, headers=self._headers)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as e:
            raise StoreError(f"kv {args[0]} HTTP {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise StoreError(f"kv {args[0]} failed: {e}") from e
        if not isinstance(body, dict):
            raise StoreError(f"kv {args[0]} returned unexpected body: {body!r}")
        if body.get("error"):
            raise StoreError(f"kv {args[0]} error: {body['error']}")
        return body.get("result")

    def _cas(self, key: str, expected: Optional[str], new: Optional[str], ttl_ms: int) -> bool:
        result = self._command(
            "EVAL", CAS_SCRIPT, 1, key, expected or "", new or "", max(ttl_ms, 1),
        )
        return int(result or 0) == 1

    def _decode(self, identity: str, raw: Optional[str]) -> Optional[ClaimRecord]:
        if not raw:
            return None
        try:
            return ClaimRecord.from_json(identity, raw)
        except (ValueError, KeyError, TypeError) as e:
            raise StoreError(f"corrupt claim record for {identity}: {raw!r}") from e

    def get(self, identity: str) -> Optional[ClaimRecord]:
        return self._decode(identity, self._command("GET", self._key(identity)))

    def try_reserve(self, identity: str, now_ms: int) -> ReserveResult:
        key = self._key(identity)
        for attempt in range(1, MAX_CAS_ATTEMPTS + 1):
            raw = self._command("GET", key)
            result = evaluate(
                self._decode(identity, raw), identity, now_ms,
                self.cooldown_ms, self.reservation_timeout_ms,
            )
            if isinstance(result, Rejected):
                return result
            if self._cas(key, raw, result.record.to_json(), self.reservation_timeout_ms):
                return result
            logger.debug("kv reserve lost a race, retrying", extra={"identity": identity, "attempt": attempt})
        raise StoreError(f"kv reserve for {identity} kept losing compare-and-swap")

    def commit(self, identity: str, now_ms: int, token: Optional[str] = None) -> None:
        record = ClaimRecord(identity, now_ms, ClaimState.COMMITTED)
        self._command("SET", self._key(identity), record.to_json(), "PX", max(self.cooldown_ms, 1))

    def release(self, identity: str, now_ms: int, token: Optional[str] = None) -> None:
        key = self._key(identity)
        raw = self._command("GET", key)
        cur = self._decode(identity, raw)
        if cur is None or not cur.is_reserved:
            return
        if token and cur.token != token:
            return
        prev = cur.restored()
        ttl_ms = 0
        if prev is not None:
            ttl_ms = prev.last_claim_at + self.cooldown_ms - now_ms
        new = prev.to_json() if prev is not None and ttl_ms > 0 else None
        if not self._cas(key, raw, new, ttl_ms):
            logger.warning("kv release skipped: reservation changed underneath", extra={"identity": identity})

    def close(self) -> None:
        self.client.close()
