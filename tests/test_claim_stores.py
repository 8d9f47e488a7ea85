"""Behaviour every ClaimStore backend must share."""

import threading
from concurrent.futures import ThreadPoolExecutor

import fakeredis
import pytest

from faucet.domain.claims import ClaimRecord, ClaimState, Rejected, Reserved
from faucet.store.file_store import FileClaimStore
from faucet.store.kv_rest import KVRestClaimStore
from faucet.store.memory import MemoryClaimStore
from faucet.store.redis_store import RedisClaimStore
from tests.fake_kv import FakeKVService
from tests.helpers import COOLDOWN_MS, HOUR_MS, RESERVATION_TIMEOUT_MS


def test_get_unknown_identity_is_none(store):
    assert store.get("0xabc") is None


def test_reserve_then_get_shows_reserved(store, now_ms):
    result = store.try_reserve("0xabc", now_ms)
    assert isinstance(result, Reserved)
    rec = store.get("0xabc")
    assert rec.state == ClaimState.RESERVED
    assert rec.last_claim_at == now_ms
    assert rec.token == result.record.token


def test_second_reserve_is_rejected_while_in_flight(store, now_ms):
    store.try_reserve("0xabc", now_ms)
    result = store.try_reserve("0xabc", now_ms + 10)
    assert isinstance(result, Rejected)
    assert result.reason == "in_flight"


def test_commit_starts_cooldown(store, now_ms):
    reserved = store.try_reserve("0xabc", now_ms)
    store.commit("0xabc", now_ms, token=reserved.record.token)

    rec = store.get("0xabc")
    assert rec.state == ClaimState.COMMITTED
    assert rec.last_claim_at == now_ms

    result = store.try_reserve("0xabc", now_ms + HOUR_MS)
    assert isinstance(result, Rejected)
    assert result.reason == "cooldown"
    assert result.remaining_ms == COOLDOWN_MS - HOUR_MS


def test_cooldown_expiry_allows_new_reservation(store, now_ms):
    reserved = store.try_reserve("0xabc", now_ms)
    store.commit("0xabc", now_ms, token=reserved.record.token)
    result = store.try_reserve("0xabc", now_ms + 13 * HOUR_MS)
    assert isinstance(result, Reserved)
    assert result.record.previous_claim_at == now_ms


def test_release_without_prior_commit_clears_record(store, now_ms):
    reserved = store.try_reserve("0xabc", now_ms)
    store.release("0xabc", now_ms, token=reserved.record.token)
    assert store.get("0xabc") is None
    assert isinstance(store.try_reserve("0xabc", now_ms + 1000), Reserved)


def test_release_puts_back_previous_commit(store, now_ms):
    earlier = now_ms - COOLDOWN_MS
    first = store.try_reserve("0xabc", earlier)
    store.commit("0xabc", earlier, token=first.record.token)

    second = store.try_reserve("0xabc", now_ms)
    assert isinstance(second, Reserved)
    assert second.record.previous_claim_at == earlier
    store.release("0xabc", now_ms, token=second.record.token)

    # expiring backends may drop a restored commit whose cooldown is already over
    rec = store.get("0xabc")
    if rec is not None:
        assert rec.state == ClaimState.COMMITTED
        assert rec.last_claim_at == earlier
    assert isinstance(store.try_reserve("0xabc", now_ms + 1000), Reserved)


def test_memory_and_file_release_keep_previous_commit(tmp_path, now_ms):
    for store in (
        MemoryClaimStore(COOLDOWN_MS, RESERVATION_TIMEOUT_MS),
        FileClaimStore(tmp_path / "claims.json", COOLDOWN_MS, RESERVATION_TIMEOUT_MS),
    ):
        reserved = store.try_reserve("0xabc", now_ms)
        store.commit("0xabc", now_ms, token=reserved.record.token)
        later = now_ms + COOLDOWN_MS
        second = store.try_reserve("0xabc", later)
        store.release("0xabc", later, token=second.record.token)
        rec = store.get("0xabc")
        assert rec.state == ClaimState.COMMITTED
        assert rec.last_claim_at == now_ms


def _reservation_over(prev_ms: int) -> ClaimRecord:
    return ClaimRecord("0xabc", prev_ms + COOLDOWN_MS, ClaimState.RESERVED, previous_claim_at=prev_ms)


def test_redis_release_expiry_follows_caller_clock():
    # timestamps far in the past: a wall-clock ttl would already be negative
    prev = 1_000_000
    client = fakeredis.FakeRedis(decode_responses=True)
    store = RedisClaimStore(client, COOLDOWN_MS, RESERVATION_TIMEOUT_MS, key_prefix="t:")
    reservation = _reservation_over(prev)
    client.set("t:0xabc", reservation.to_json())

    store.release("0xabc", prev + HOUR_MS, token=reservation.token)

    rec = store.get("0xabc")
    assert rec.state == ClaimState.COMMITTED
    assert rec.last_claim_at == prev
    assert COOLDOWN_MS - HOUR_MS - 60_000 < client.pttl("t:0xabc") <= COOLDOWN_MS - HOUR_MS


def test_kv_release_expiry_follows_caller_clock():
    prev = 1_000_000
    svc = FakeKVService()
    store = KVRestClaimStore("https://kv.example", svc.token, COOLDOWN_MS, RESERVATION_TIMEOUT_MS,
                             key_prefix="t:", client=svc.client())
    reservation = _reservation_over(prev)
    svc.data["t:0xabc"] = reservation.to_json()

    store.release("0xabc", prev + HOUR_MS, token=reservation.token)

    assert store.get("0xabc").last_claim_at == prev
    assert svc.ttls["t:0xabc"] == COOLDOWN_MS - HOUR_MS


def test_release_with_foreign_token_is_noop(store, now_ms):
    store.try_reserve("0xabc", now_ms)
    store.release("0xabc", now_ms, token="not-ours")
    assert store.get("0xabc").state == ClaimState.RESERVED


def test_release_does_not_touch_committed_record(store, now_ms):
    reserved = store.try_reserve("0xabc", now_ms)
    store.commit("0xabc", now_ms, token=reserved.record.token)
    store.release("0xabc", now_ms, token=reserved.record.token)
    assert store.get("0xabc").state == ClaimState.COMMITTED


def test_stale_reservation_is_reclaimed(store, now_ms):
    store.try_reserve("0xabc", now_ms)
    result = store.try_reserve("0xabc", now_ms + RESERVATION_TIMEOUT_MS)
    assert isinstance(result, Reserved)


def test_get_is_idempotent(store, now_ms):
    reserved = store.try_reserve("0xabc", now_ms)
    store.commit("0xabc", now_ms, token=reserved.record.token)
    first = store.get("0xabc")
    assert all(store.get("0xabc") == first for _ in range(5))


def test_identities_are_independent(store, now_ms):
    assert isinstance(store.try_reserve("0xaaa", now_ms), Reserved)
    assert isinstance(store.try_reserve("0xbbb", now_ms), Reserved)


def test_concurrent_reserve_admits_exactly_one(store_factory, now_ms):
    # one store per thread: separate connections to the same backend
    stores = [store_factory() for _ in range(16)]
    start = threading.Barrier(16)

    def attempt(i):
        start.wait()
        return stores[i].try_reserve("0xabc", now_ms)

    with ThreadPoolExecutor(max_workers=16) as pool:
        results = list(pool.map(attempt, range(16)))

    assert sum(isinstance(r, Reserved) for r in results) == 1
    assert sum(isinstance(r, Rejected) for r in results) == 15


def test_two_file_stores_share_the_same_file(tmp_path, now_ms):
    path = tmp_path / "claims.json"
    a = FileClaimStore(path, COOLDOWN_MS, RESERVATION_TIMEOUT_MS)
    b = FileClaimStore(path, COOLDOWN_MS, RESERVATION_TIMEOUT_MS)
    reserved = a.try_reserve("0xabc", now_ms)
    a.commit("0xabc", now_ms, token=reserved.record.token)
    assert isinstance(b.try_reserve("0xabc", now_ms + HOUR_MS), Rejected)


def test_file_store_prunes_expired_commits(tmp_path, now_ms):
    store = FileClaimStore(tmp_path / "claims.json", COOLDOWN_MS, RESERVATION_TIMEOUT_MS)
    old = store.try_reserve("0xold", now_ms - 2 * COOLDOWN_MS)
    store.commit("0xold", now_ms - 2 * COOLDOWN_MS, token=old.record.token)
    new = store.try_reserve("0xnew", now_ms)
    store.commit("0xnew", now_ms, token=new.record.token)
    assert store.get("0xold") is None
    assert store.get("0xnew") is not None


def test_memory_store_does_not_grow_with_past_claimants(now_ms):
    store = MemoryClaimStore(COOLDOWN_MS, RESERVATION_TIMEOUT_MS)
    for i in range(1000):
        identity = f"0x{i:040x}"
        reserved = store.try_reserve(identity, now_ms)
        store.commit(identity, now_ms, token=reserved.record.token)
    assert len(store) == 1000

    assert isinstance(store.try_reserve("0xnew", now_ms + 10 * COOLDOWN_MS), Reserved)
    assert len(store) == 1
    assert store.get(f"0x{0:040x}") is None
    assert len(store._locks) == 64


def test_memory_store_keeps_live_records_when_pruning(now_ms):
    store = MemoryClaimStore(COOLDOWN_MS, RESERVATION_TIMEOUT_MS)
    old = store.try_reserve("0xold", now_ms - COOLDOWN_MS)
    store.commit("0xold", now_ms - COOLDOWN_MS, token=old.record.token)
    recent = store.try_reserve("0xrecent", now_ms - HOUR_MS)
    store.commit("0xrecent", now_ms - HOUR_MS, token=recent.record.token)
    store.try_reserve("0xinflight", now_ms)

    store.try_reserve("0xnew", now_ms + 2 * 60_000)
    assert store.get("0xold") is None
    assert store.get("0xrecent").state == ClaimState.COMMITTED
    assert store.get("0xinflight").state == ClaimState.RESERVED

def test_redis_store_sets_native_expiry(now_ms):
    client = fakeredis.FakeRedis(decode_responses=True)
    store = RedisClaimStore(client, COOLDOWN_MS, RESERVATION_TIMEOUT_MS, key_prefix="t:")
    reserved = store.try_reserve("0xabc", now_ms)
    assert 0 < client.pttl("t:0xabc") <= RESERVATION_TIMEOUT_MS
    store.commit("0xabc", now_ms, token=reserved.record.token)
    assert RESERVATION_TIMEOUT_MS < client.pttl("t:0xabc") <= COOLDOWN_MS


def test_kv_store_uses_compare_and_swap_for_reserve(now_ms):
    svc = FakeKVService()
    store = KVRestClaimStore("https://kv.example", svc.token, COOLDOWN_MS, RESERVATION_TIMEOUT_MS,
                             key_prefix="t:", client=svc.client())
    store.try_reserve("0xabc", now_ms)
    assert [c[0] for c in svc.commands] == ["GET", "EVAL"]
    assert svc.ttls["t:0xabc"] == RESERVATION_TIMEOUT_MS


def test_kv_store_loses_race_then_rejects(now_ms):
    svc = FakeKVService()
    store = KVRestClaimStore("https://kv.example", svc.token, COOLDOWN_MS, RESERVATION_TIMEOUT_MS,
                             key_prefix="t:", client=svc.client())
    other = KVRestClaimStore("https://kv.example", svc.token, COOLDOWN_MS, RESERVATION_TIMEOUT_MS,
                             key_prefix="t:", client=svc.client())

    reserved = other.try_reserve("0xabc", now_ms)
    other_record = svc.data.pop("t:0xabc")
    real_run = svc._run
    raced = {"done": False}

    def racing_run(cmd):
        # the other instance's write lands between our GET and our EVAL
        if cmd[0] == "EVAL" and not raced["done"]:
            raced["done"] = True
            svc.data["t:0xabc"] = other_record
        return real_run(cmd)

    svc._run = racing_run

    result = store.try_reserve("0xabc", now_ms)
    assert isinstance(result, Rejected)
    assert store.get("0xabc").token == reserved.record.token
