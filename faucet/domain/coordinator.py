"""Claim admission around the external transfer.

Order of operations for one request:
    1. funding check (no reservation when the faucet is empty)
    2. atomic reservation in the ClaimStore
    3. transfer, bounded by a timeout
    4. commit on success (retried), release on failure

Store calls are blocking I/O and run in the threadpool, so requests for
different identities overlap; per-identity atomicity is the store's job.

Failures are biased toward "identity may claim again" except after a
confirmed transfer, where the commit is retried and, if it still cannot be
written, flagged for reconciliation.
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Optional

from starlette.concurrency import run_in_threadpool

from faucet.domain.claims import (
    ClaimOutcome,
    Dispatched,
    Rejected,
    Throttled,
    TransferFailed,
    Underfunded,
)
from faucet.domain.errors import StoreError
from faucet.integrations.distributor import Distributor, DistributorError
from faucet.reconciliation import (
    AMBIGUOUS_TRANSFER,
    COMMIT_FAILED,
    RELEASE_FAILED,
    ReconciliationLog,
)
from faucet.store.base import ClaimStore

logger = logging.getLogger(__name__)


class ClaimCoordinator:
    def __init__(
        self,
        store: ClaimStore,
        distributor: Distributor,
        amount: Decimal,
        transfer_timeout_sec: float = 30.0,
        commit_retries: int = 3,
        commit_retry_delay_sec: float = 0.2,
        reconciliation: Optional[ReconciliationLog] = None,
    ):
        if amount <= 0:
            raise ValueError("claim amount must be positive")
        self.store = store
        self.distributor = distributor
        self.amount = amount
        self.transfer_timeout_sec = transfer_timeout_sec
        self.commit_retries = max(1, commit_retries)
        self.commit_retry_delay_sec = commit_retry_delay_sec
        self.reconciliation = reconciliation or ReconciliationLog()

    async def funding_level(self) -> Decimal:
        return await self.distributor.balance()

    async def request_claim(self, identity: str, now_ms: int) -> ClaimOutcome:
        """Run one claim attempt for an already-normalized identity.

        Raises StoreError only when the reservation itself cannot be made;
        nothing has been sent to the ledger in that case.
        """
        try:
            balance = await self.distributor.balance()
        except DistributorError as e:
            logger.error(f"balance check failed: {e}", extra={"identity": identity})
            return TransferFailed(cause=f"balance check failed: {e}")

        if balance < self.amount:
            logger.warning(
                f"faucet underfunded: balance={balance} amount={self.amount}",
                extra={"identity": identity, "outcome": "underfunded"},
            )
            return Underfunded(balance=balance)

        result = await run_in_threadpool(self.store.try_reserve, identity, now_ms)
        if isinstance(result, Rejected):
            logger.info(
                f"claim throttled ({result.reason})",
                extra={"identity": identity, "outcome": "throttled", "remaining_ms": result.remaining_ms},
            )
            return Throttled(remaining_ms=result.remaining_ms)

        token = result.record.token
        try:
            receipt = await asyncio.wait_for(
                self.distributor.submit(identity, self.amount),
                timeout=self.transfer_timeout_sec,
            )
        except asyncio.TimeoutError:
            return await self._fail(identity, token, now_ms, f"transfer timed out after {self.transfer_timeout_sec}s", True)
        except DistributorError as e:
            return await self._fail(identity, token, now_ms, str(e), e.ambiguous)
        except Exception as e:
            logger.exception("unexpected distributor error", extra={"identity": identity})
            return await self._fail(identity, token, now_ms, repr(e), True)

        await self._commit(identity, token, now_ms, receipt.tx_hash)
        logger.info(
            f"dispatched {receipt.amount} {receipt.token}",
            extra={"identity": identity, "outcome": "dispatched", "receipt": receipt.tx_hash},
        )
        return Dispatched(receipt=receipt)

    async def _commit(self, identity: str, token: str, now_ms: int, tx_hash: str) -> None:
        last_error: Optional[Exception] = None
        for attempt in range(1, self.commit_retries + 1):
            try:
                await run_in_threadpool(self.store.commit, identity, now_ms, token=token)
                return
            except StoreError as e:
                last_error = e
                logger.warning(
                    f"commit failed: {e.detail}",
                    extra={"identity": identity, "attempt": attempt, "receipt": tx_hash},
                )
                if attempt < self.commit_retries:
                    await asyncio.sleep(self.commit_retry_delay_sec)

        self.reconciliation.record(
            COMMIT_FAILED, identity, now_ms,
            f"transfer landed but cooldown record not written after {self.commit_retries} attempts: {last_error}",
            receipt=tx_hash,
        )

    async def _fail(self, identity: str, token: str, now_ms: int, cause: str, ambiguous: bool) -> TransferFailed:
        logger.error(
            f"transfer failed: {cause}",
            extra={"identity": identity, "outcome": "transfer_failed"},
        )
        if ambiguous:
            self.reconciliation.record(
                AMBIGUOUS_TRANSFER, identity, now_ms,
                f"transfer outcome unknown, reservation released: {cause}",
            )
        try:
            await run_in_threadpool(self.store.release, identity, now_ms, token=token)
        except StoreError as e:
            # reservation stays until the reservation timeout reclaims it
            self.reconciliation.record(
                RELEASE_FAILED, identity, now_ms,
                f"could not release reservation after failed transfer: {e.detail}",
            )
        return TransferFailed(cause=cause, ambiguous=ambiguous)
