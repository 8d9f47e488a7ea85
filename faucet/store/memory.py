from __future__ import annotations

import logging
import threading
import zlib
from typing import Dict, List, Optional

from faucet.domain.claims import ClaimRecord, ClaimState, Reserved, ReserveResult, evaluate
from faucet.store.base import ClaimStore

logger = logging.getLogger(__name__)

LOCK_STRIPES = 64
MAX_PRUNE_INTERVAL_MS = 60_000


class MemoryClaimStore(ClaimStore):
    """
    Process-local claim table.
    Resets on restart and is not shared between workers, so with more than
    one process an identity can claim once per process per window.
    Identities hash onto a fixed set of lock stripes; expired commits are
    dropped at most once per prune interval.
    """

    backend = "memory"

    def __init__(self, cooldown_ms: int, reservation_timeout_ms: int, stripes: int = LOCK_STRIPES):
        super().__init__(cooldown_ms, reservation_timeout_ms)
        self._records: Dict[str, ClaimRecord] = {}
        # guards dict structure only; never held while taking a stripe lock
        self._guard = threading.Lock()
        self._locks: List[threading.Lock] = [threading.Lock() for _ in range(max(1, stripes))]
        self._prune_interval_ms = max(1, min(cooldown_ms, MAX_PRUNE_INTERVAL_MS))
        self._last_prune_ms: Optional[int] = None
        logger.warning(
            "memory claim store in use: not durable, not shared across processes",
            extra={"backend": self.backend},
        )

    def __len__(self) -> int:
        return len(self._records)

    def _lock_for(self, identity: str) -> threading.Lock:
        return self._locks[zlib.crc32(identity.encode()) % len(self._locks)]

    def _put(self, identity: str, record: Optional[ClaimRecord]) -> None:
        with self._guard:
            if record is None:
                self._records.pop(identity, None)
            else:
                self._records[identity] = record

    def get(self, identity: str) -> Optional[ClaimRecord]:
        return self._records.get(identity)

    def try_reserve(self, identity: str, now_ms: int) -> ReserveResult:
        with self._lock_for(identity):
            result = evaluate(
                self._records.get(identity), identity, now_ms,
                self.cooldown_ms, self.reservation_timeout_ms,
            )
            if isinstance(result, Reserved):
                self._put(identity, result.record)
        self._maybe_prune(now_ms)
        return result

    def commit(self, identity: str, now_ms: int, token: Optional[str] = None) -> None:
        with self._lock_for(identity):
            cur = self._records.get(identity)
            if token and cur is not None and cur.token != token:
                logger.warning("commit over a foreign reservation", extra={"identity": identity})
            self._put(identity, ClaimRecord(identity, now_ms, ClaimState.COMMITTED))
        self._maybe_prune(now_ms)

    def release(self, identity: str, now_ms: int, token: Optional[str] = None) -> None:
        with self._lock_for(identity):
            cur = self._records.get(identity)
            if cur is None or not cur.is_reserved:
                return
            if token and cur.token != token:
                return
            self._put(identity, cur.restored())

    def _expired(self, record: ClaimRecord, now_ms: int) -> bool:
        return record.state == ClaimState.COMMITTED and now_ms - record.last_claim_at >= self.cooldown_ms

    def _maybe_prune(self, now_ms: int) -> None:
        with self._guard:
            if self._last_prune_ms is not None and now_ms - self._last_prune_ms < self._prune_interval_ms:
                return
            self._last_prune_ms = now_ms
            candidates = [k for k, v in self._records.items() if self._expired(v, now_ms)]

        # one stripe at a time, re-checked under it
        for identity in candidates:
            with self._lock_for(identity):
                cur = self._records.get(identity)
                if cur is not None and self._expired(cur, now_ms):
                    self._put(identity, None)
