from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from faucet.domain.claims import ClaimRecord, ReserveResult


class ClaimStore(ABC):
    """Persistence of identity -> last successful claim, with reservations.

    ``try_reserve`` must be atomic per identity: two concurrent callers for
    the same identity never both get ``Reserved``. ``release`` restores the
    committed record a reservation replaced. Expiring backends compute the restored
    record's TTL from the ``now_ms`` passed to ``release``. ``token`` identifies the
    reservation being committed or released; a release whose token no
    longer matches (the slot was reclaimed as stale) is a no-op.
    """

    backend = "abstract"

    def __init__(self, cooldown_ms: int, reservation_timeout_ms: int):
        self.cooldown_ms = cooldown_ms
        self.reservation_timeout_ms = reservation_timeout_ms

    @abstractmethod
    def get(self, identity: str) -> Optional[ClaimRecord]:
        ...

    @abstractmethod
    def try_reserve(self, identity: str, now_ms: int) -> ReserveResult:
        ...

    @abstractmethod
    def commit(self, identity: str, now_ms: int, token: Optional[str] = None) -> None:
        ...

    @abstractmethod
    def release(self, identity: str, now_ms: int, token: Optional[str] = None) -> None:
        ...

    def close(self) -> None:
        pass
