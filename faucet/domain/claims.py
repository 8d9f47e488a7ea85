"""Claim records and the eligibility rule every ClaimStore backend shares.

Timestamps are integer epoch milliseconds throughout. A record is either
``reserved`` (a transfer is in flight) or ``committed`` (the last transfer
that actually landed). A reservation remembers the committed timestamp it
superseded so a release can put it back.
"""

from __future__ import annotations

import json
from decimal import Decimal
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union
from uuid import uuid4


class ClaimState(str, Enum):
    RESERVED = "reserved"
    COMMITTED = "committed"


@dataclass
class ClaimRecord:
    identity: str
    last_claim_at: int
    state: ClaimState
    previous_claim_at: Optional[int] = None
    token: str = field(default_factory=lambda: uuid4().hex)

    @property
    def is_reserved(self) -> bool:
        return self.state == ClaimState.RESERVED

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "claimAt": self.last_claim_at,
            "prev": self.previous_claim_at,
            "token": self.token,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_json(cls, identity: str, raw: Union[str, bytes]) -> "ClaimRecord":
        return cls.from_dict(identity, json.loads(raw))

    @classmethod
    def from_dict(cls, identity: str, data: dict) -> "ClaimRecord":
        return cls(
            identity=identity,
            last_claim_at=int(data["claimAt"]),
            state=ClaimState(data["state"]),
            previous_claim_at=data.get("prev"),
            token=data.get("token") or uuid4().hex,
        )

    def restored(self) -> Optional["ClaimRecord"]:
        """The committed record this reservation replaced, if any."""
        if self.previous_claim_at is None:
            return None
        return ClaimRecord(
            identity=self.identity,
            last_claim_at=self.previous_claim_at,
            state=ClaimState.COMMITTED,
        )


@dataclass
class Reserved:
    record: ClaimRecord


@dataclass
class Rejected:
    reason: str
    remaining_ms: int = 0


ReserveResult = Union[Reserved, Rejected]


def evaluate(
    existing: Optional[ClaimRecord],
    identity: str,
    now_ms: int,
    cooldown_ms: int,
    reservation_timeout_ms: int,
) -> ReserveResult:
    """Decide whether ``identity`` may reserve a claim slot at ``now_ms``.

    Eligible when there is no record, when the committed record's cooldown
    has run out, or when a reservation is older than the reservation timeout
    (abandoned by a crashed or hung request).
    """
    if existing is None:
        return Reserved(ClaimRecord(identity, now_ms, ClaimState.RESERVED))

    if existing.state == ClaimState.COMMITTED:
        elapsed = now_ms - existing.last_claim_at
        if elapsed < cooldown_ms:
            return Rejected("cooldown", remaining_ms=cooldown_ms - elapsed)
        return Reserved(ClaimRecord(
            identity, now_ms, ClaimState.RESERVED,
            previous_claim_at=existing.last_claim_at,
        ))

    # reserved
    age = now_ms - existing.last_claim_at
    if age < reservation_timeout_ms:
        return Rejected("in_flight", remaining_ms=max(0, cooldown_ms - age))
    return Reserved(ClaimRecord(
        identity, now_ms, ClaimState.RESERVED,
        previous_claim_at=existing.previous_claim_at,
    ))


# ---- coordinator outcomes ----

@dataclass
class TransferReceipt:
    tx_hash: str
    amount: Decimal
    token: str


@dataclass
class Dispatched:
    receipt: TransferReceipt


@dataclass
class Throttled:
    remaining_ms: int


@dataclass
class Underfunded:
    balance: Optional[Decimal] = None


@dataclass
class TransferFailed:
    cause: str
    ambiguous: bool = False


ClaimOutcome = Union[Dispatched, Throttled, Underfunded, TransferFailed]
