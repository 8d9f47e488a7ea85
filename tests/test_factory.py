import pytest

from faucet.config import Settings
from faucet.store.factory import build_claim_store
from faucet.store.file_store import FileClaimStore
from faucet.store.kv_rest import KVRestClaimStore
from faucet.store.memory import MemoryClaimStore
from faucet.store.redis_store import RedisClaimStore


def test_memory_backend():
    store = build_claim_store(Settings(CLAIM_STORE="memory", CLAIM_INTERVAL_HOURS=1))
    assert isinstance(store, MemoryClaimStore)
    assert store.cooldown_ms == 60 * 60 * 1000


def test_file_backend(tmp_path):
    store = build_claim_store(Settings(CLAIM_STORE="file", CLAIM_STORE_PATH=str(tmp_path / "c.json")))
    assert isinstance(store, FileClaimStore)


def test_redis_backend_from_url():
    # redis-py connects lazily, so no server is needed here
    store = build_claim_store(Settings(CLAIM_STORE="redis", REDIS_URL="redis://localhost:6379/0"))
    assert isinstance(store, RedisClaimStore)


def test_kv_backend():
    store = build_claim_store(Settings(
        CLAIM_STORE="kv", KV_REST_API_URL="https://kv.example", KV_REST_API_TOKEN="t",
    ))
    assert isinstance(store, KVRestClaimStore)


@pytest.mark.parametrize("cfg", [
    dict(CLAIM_STORE="redis", REDIS_URL=None),
    dict(CLAIM_STORE="kv", KV_REST_API_URL=None),
    dict(CLAIM_STORE="postgres"),
])
def test_bad_backend_config(cfg):
    with pytest.raises(ValueError):
        build_claim_store(Settings(**cfg))
