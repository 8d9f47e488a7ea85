"""
Claims whose ledger outcome and stored record may disagree.

Nothing here resolves them: an operator checks the ledger and fixes the
store by hand. Events are kept in memory (bounded) for the admin API and
always logged with ``reconciliation=True`` so log alerting picks them up.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import asdict, dataclass
from typing import Deque, List, Optional

logger = logging.getLogger(__name__)

AMBIGUOUS_TRANSFER = "ambiguous_transfer"
COMMIT_FAILED = "commit_failed"
RELEASE_FAILED = "release_failed"


@dataclass
class ReconciliationEvent:
    kind: str
    identity: str
    at_ms: int
    detail: str
    receipt: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


class ReconciliationLog:
    def __init__(self, maxlen: int = 500):
        self._events: Deque[ReconciliationEvent] = deque(maxlen=maxlen)
        self._lock = threading.Lock()

    def record(
        self,
        kind: str,
        identity: str,
        at_ms: int,
        detail: str,
        receipt: Optional[str] = None,
    ) -> ReconciliationEvent:
        event = ReconciliationEvent(kind, identity, at_ms, detail, receipt)
        with self._lock:
            self._events.append(event)

        # a lost commit re-opens the identity for a double claim
        level = logging.CRITICAL if kind == COMMIT_FAILED else logging.WARNING
        logger.log(
            level,
            f"reconciliation needed ({kind}): {detail}",
            extra={"identity": identity, "receipt": receipt, "reconciliation": True},
        )
        return event

    def events(self) -> List[ReconciliationEvent]:
        with self._lock:
            return list(self._events)

    def __len__(self) -> int:
        return len(self._events)
