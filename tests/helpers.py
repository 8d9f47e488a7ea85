"""Shared timing constants and store doubles for tests."""

from decimal import Decimal
from pathlib import Path
from typing import Optional

import fakeredis

from faucet.domain.errors import StoreError
from faucet.store.base import ClaimStore
from faucet.store.file_store import FileClaimStore
from faucet.store.kv_rest import KVRestClaimStore
from faucet.store.memory import MemoryClaimStore
from faucet.store.redis_store import RedisClaimStore
from tests.fake_kv import FakeKVService

HOUR_MS = 60 * 60 * 1000
COOLDOWN_MS = 12 * HOUR_MS
RESERVATION_TIMEOUT_MS = 120_000
AMOUNT = Decimal("5")

BACKENDS = ["memory", "file", "redis", "kv"]


class StoreFactory:
    """Builds stores of one backend that all see the same underlying data.

    Several instances stand in for several workers (or threads with their
    own connection) sharing one Redis server, KV service or claim file.
    """

    def __init__(self, backend: str, tmp_path: Path):
        self.backend = backend
        self.path = tmp_path / "claims.json"
        self.redis_server = fakeredis.FakeServer()
        self.kv = FakeKVService()
        self._memory: Optional[MemoryClaimStore] = None

    def __call__(self) -> ClaimStore:
        timing = dict(cooldown_ms=COOLDOWN_MS, reservation_timeout_ms=RESERVATION_TIMEOUT_MS)
        if self.backend == "memory":
            # process-local: every caller shares the one instance
            if self._memory is None:
                self._memory = MemoryClaimStore(**timing)
            return self._memory
        if self.backend == "file":
            return FileClaimStore(self.path, **timing)
        if self.backend == "redis":
            client = fakeredis.FakeRedis(server=self.redis_server, decode_responses=True)
            return RedisClaimStore(client, **timing)
        if self.backend == "kv":
            return KVRestClaimStore("https://kv.example", self.kv.token, client=self.kv.client(), **timing)
        raise ValueError(self.backend)


class FlakyStore(MemoryClaimStore):
    """Memory store whose operations fail a configurable number of times."""

    def __init__(self, commit_failures: int = 0, release_failures: int = 0, reserve_fails: bool = False):
        super().__init__(COOLDOWN_MS, RESERVATION_TIMEOUT_MS)
        self.commit_failures = commit_failures
        self.release_failures = release_failures
        self.reserve_fails = reserve_fails
        self.commit_calls = 0

    def try_reserve(self, identity: str, now_ms: int):
        if self.reserve_fails:
            raise StoreError("backend down")
        return super().try_reserve(identity, now_ms)

    def commit(self, identity: str, now_ms: int, token: Optional[str] = None) -> None:
        self.commit_calls += 1
        if self.commit_failures > 0:
            self.commit_failures -= 1
            raise StoreError("commit write failed")
        super().commit(identity, now_ms, token=token)

    def release(self, identity: str, now_ms: int, token: Optional[str] = None) -> None:
        if self.release_failures > 0:
            self.release_failures -= 1
            raise StoreError("release write failed")
        super().release(identity, now_ms, token=token)
