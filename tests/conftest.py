"""Root conftest: safe environment defaults and shared fixtures."""

import os

# must run before anything imports faucet.config
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("CLAIM_STORE", "memory")
os.environ.setdefault("DISTRIBUTOR_MODE", "mock")
os.environ.setdefault("PUBLIC_RATE_LIMIT", "10000/minute")
os.environ.setdefault("ADMIN_RATE_LIMIT", "10000/minute")

import time
from decimal import Decimal

import pytest

from faucet.domain.coordinator import ClaimCoordinator
from faucet.integrations.distributor import MockDistributor
from faucet.store.memory import MemoryClaimStore
from tests.helpers import AMOUNT, BACKENDS, COOLDOWN_MS, RESERVATION_TIMEOUT_MS, StoreFactory


@pytest.fixture
def now_ms() -> int:
    return int(time.time() * 1000)


@pytest.fixture(params=BACKENDS)
def store_factory(request, tmp_path) -> StoreFactory:
    return StoreFactory(request.param, tmp_path)


@pytest.fixture
def store(store_factory):
    return store_factory()


@pytest.fixture
def memory_store() -> MemoryClaimStore:
    return MemoryClaimStore(COOLDOWN_MS, RESERVATION_TIMEOUT_MS)


@pytest.fixture
def distributor() -> MockDistributor:
    return MockDistributor(balance=Decimal("100"), token="SLR")


@pytest.fixture
def coordinator(memory_store, distributor) -> ClaimCoordinator:
    return ClaimCoordinator(
        store=memory_store,
        distributor=distributor,
        amount=AMOUNT,
        transfer_timeout_sec=1.0,
        commit_retries=3,
        commit_retry_delay_sec=0,
    )
