from __future__ import annotations

from faucet.config import Settings
from faucet.store.base import ClaimStore
from faucet.store.file_store import FileClaimStore
from faucet.store.kv_rest import KVRestClaimStore
from faucet.store.memory import MemoryClaimStore
from faucet.store.redis_store import RedisClaimStore


def build_claim_store(settings: Settings) -> ClaimStore:
    kind = settings.CLAIM_STORE.lower()
    timing = dict(
        cooldown_ms=settings.cooldown_ms,
        reservation_timeout_ms=settings.reservation_timeout_ms,
    )

    if kind == "memory":
        return MemoryClaimStore(**timing)
    if kind == "redis":
        if not settings.REDIS_URL:
            raise ValueError("CLAIM_STORE=redis needs REDIS_URL")
        return RedisClaimStore.from_url(settings.REDIS_URL, key_prefix=settings.KEY_PREFIX, **timing)
    if kind == "file":
        return FileClaimStore(settings.CLAIM_STORE_PATH, **timing)
    if kind == "kv":
        if not settings.KV_REST_API_URL or not settings.KV_REST_API_TOKEN:
            raise ValueError("CLAIM_STORE=kv needs KV_REST_API_URL and KV_REST_API_TOKEN")
        return KVRestClaimStore(
            settings.KV_REST_API_URL, settings.KV_REST_API_TOKEN,
            key_prefix=settings.KEY_PREFIX, **timing,
        )
    raise ValueError(f"unknown CLAIM_STORE: {settings.CLAIM_STORE!r}")
