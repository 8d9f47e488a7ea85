"""
Claim records in a local JSON file.

Every operation takes an exclusive flock on a sibling ``.lock`` file for the
whole read-modify-write, so concurrent requests in this process and in other
processes on the same host serialize. Writes go to a temp file and are
swapped in with os.replace, so a crash mid-write never truncates the table.
"""

from __future__ import annotations

import fcntl
import json
import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Optional

from faucet.domain.claims import ClaimRecord, ClaimState, Reserved, ReserveResult, evaluate
from faucet.domain.errors import StoreError
from faucet.store.base import ClaimStore

logger = logging.getLogger(__name__)


class FileClaimStore(ClaimStore):
    backend = "file"

    def __init__(self, path: Path | str, cooldown_ms: int, reservation_timeout_ms: int):
        super().__init__(cooldown_ms, reservation_timeout_ms)
        self.path = Path(path)
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        # flock is per open file description; threads in one process need their own guard
        self._thread_lock = threading.Lock()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.lock_path.touch(exist_ok=True)
        except OSError as e:
            raise StoreError(f"cannot prepare claim file {self.path}: {e}") from e

    @contextmanager
    def _locked(self) -> Iterator[Dict[str, dict]]:
        with self._thread_lock:
            try:
                lock = open(self.lock_path, "r+")
            except OSError as e:
                raise StoreError(f"cannot open lock file {self.lock_path}: {e}") from e
            with lock:
                fcntl.flock(lock, fcntl.LOCK_EX)
                try:
                    yield self._read()
                finally:
                    fcntl.flock(lock, fcntl.LOCK_UN)

    def _read(self) -> Dict[str, dict]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(f"cannot read claim file {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise StoreError(f"claim file {self.path} is not a JSON object")
        return data

    def _write(self, table: Dict[str, dict]) -> None:
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            tmp.write_text(json.dumps(table, indent=2, sort_keys=True), encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as e:
            raise StoreError(f"cannot write claim file {self.path}: {e}") from e

    def _decode(self, identity: str, raw) -> Optional[ClaimRecord]:
        if raw is None:
            return None
        try:
            return ClaimRecord.from_dict(identity, raw)
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise StoreError(f"corrupt claim record for {identity}: {raw!r}") from e

    def _prune(self, table: Dict[str, dict], now_ms: int) -> None:
        """Drop committed entries whose cooldown has run out."""
        expired = [
            k for k, v in table.items()
            if isinstance(v, dict) and v.get("state") == ClaimState.COMMITTED.value
            and now_ms - int(v.get("claimAt", 0)) >= self.cooldown_ms
        ]
        for k in expired:
            del table[k]

    def get(self, identity: str) -> Optional[ClaimRecord]:
        with self._locked() as table:
            return self._decode(identity, table.get(identity))

    def try_reserve(self, identity: str, now_ms: int) -> ReserveResult:
        with self._locked() as table:
            result = evaluate(
                self._decode(identity, table.get(identity)), identity, now_ms,
                self.cooldown_ms, self.reservation_timeout_ms,
            )
            if isinstance(result, Reserved):
                table[identity] = result.record.to_dict()
                self._write(table)
            return result

    def commit(self, identity: str, now_ms: int, token: Optional[str] = None) -> None:
        with self._locked() as table:
            self._prune(table, now_ms)
            table[identity] = ClaimRecord(identity, now_ms, ClaimState.COMMITTED).to_dict()
            self._write(table)

    def release(self, identity: str, now_ms: int, token: Optional[str] = None) -> None:
        with self._locked() as table:
            cur = self._decode(identity, table.get(identity))
            if cur is None or not cur.is_reserved:
                return
            if token and cur.token != token:
                return
            prev = cur.restored()
            if prev is None:
                del table[identity]
            else:
                table[identity] = prev.to_dict()
            self._write(table)
