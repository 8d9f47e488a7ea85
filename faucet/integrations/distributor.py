from __future__ import annotations

import asyncio
import hashlib
import logging
from decimal import Decimal, InvalidOperation
from typing import Optional, Protocol

import httpx

from faucet.config import Settings
from faucet.domain.claims import TransferReceipt

logger = logging.getLogger(__name__)


class DistributorError(Exception):
    """Transfer or balance call failed.

    ``ambiguous`` means the request may have reached the ledger before the
    failure (timeout, dropped connection after send), so the transfer could
    still land.
    """

    def __init__(self, message: str, ambiguous: bool = False):
        super().__init__(message)
        self.ambiguous = ambiguous


class Distributor(Protocol):
    async def balance(self) -> Decimal:
        ...

    async def submit(self, address: str, amount: Decimal) -> TransferReceipt:
        ...


class MockDistributor:
    """
    In-process ledger for local runs and tests.
    - balance decreases by ``amount`` on each successful submit
    - fail_next(n) makes the next n submits raise
    - delay_sec simulates ledger latency
    """

    def __init__(
        self,
        balance: Decimal | str | int = Decimal("1000"),
        token: str = "SLR",
        delay_sec: float = 0.0,
    ):
        self._balance = Decimal(balance)
        self.token = token
        self.delay_sec = delay_sec
        self.submitted: list[tuple[str, Decimal]] = []
        self._failures = 0
        self._ambiguous = False
        self._lock = asyncio.Lock()

    def fail_next(self, n: int = 1, ambiguous: bool = False) -> None:
        self._failures = n
        self._ambiguous = ambiguous

    def set_balance(self, value: Decimal | str | int) -> None:
        self._balance = Decimal(value)

    async def balance(self) -> Decimal:
        return self._balance

    async def submit(self, address: str, amount: Decimal) -> TransferReceipt:
        if self.delay_sec:
            await asyncio.sleep(self.delay_sec)
        async with self._lock:
            if self._failures > 0:
                self._failures -= 1
                raise DistributorError("mock transfer failure", ambiguous=self._ambiguous)
            if self._balance < amount:
                raise DistributorError("insufficient faucet balance at submit")
            self._balance -= amount
            self.submitted.append((address, amount))
            seed = f"{address}:{amount}:{len(self.submitted)}".encode()
            tx_hash = "0x" + hashlib.sha256(seed).hexdigest()
        return TransferReceipt(tx_hash=tx_hash, amount=amount, token=self.token)


class RelayDistributor:
    """
    Talks to a signer relay that holds the faucet key and the token contract.
    GET  {base}/balance   -> {"balance": "<decimal>"}
    POST {base}/transfer  {"to", "amount", "token"} -> {"txHash": "0x..."}
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        token_address: str,
        credential: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.token_address = token_address
        self.timeout = timeout
        self._transport = transport
        self._headers = {"Authorization": f"Bearer {credential}"} if credential else {}

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport, headers=self._headers)

    async def balance(self) -> Decimal:
        try:
            async with self._client() as client:
                response = await client.get(f"{self.base_url}/balance", params={"token": self.token_address})
                response.raise_for_status()
                return Decimal(str(response.json()["balance"]))
        except httpx.HTTPError as e:
            logger.error(f"[Distributor] balance call failed: {e}")
            raise DistributorError(f"balance call failed: {e}") from e
        except (KeyError, ValueError, TypeError, InvalidOperation) as e:
            raise DistributorError(f"malformed balance reply: {e}") from e

    async def submit(self, address: str, amount: Decimal) -> TransferReceipt:
        payload = {"to": address, "amount": str(amount), "token": self.token_address}
        try:
            async with self._client() as client:
                response = await client.post(f"{self.base_url}/transfer", json=payload)
                response.raise_for_status()
                tx_hash = response.json()["txHash"]
        except (httpx.TimeoutException, httpx.RemoteProtocolError, httpx.ReadError) as e:
            # request may already be on the relay
            logger.error(f"[Distributor] transfer outcome unknown: {e!r}")
            raise DistributorError(f"transfer outcome unknown: {e!r}", ambiguous=True) from e
        except httpx.HTTPStatusError as e:
            logger.error(f"[Distributor] transfer HTTP {e.response.status_code}")
            raise DistributorError(f"transfer rejected with HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise DistributorError(f"transfer call failed: {e!r}") from e
        except (KeyError, ValueError, TypeError) as e:
            # relay answered 2xx, so the transfer most likely went out
            raise DistributorError(f"malformed transfer reply: {e}", ambiguous=True) from e
        return TransferReceipt(tx_hash=str(tx_hash), amount=amount, token=self.token)


def build_distributor(settings: Settings) -> Distributor:
    mode = settings.DISTRIBUTOR_MODE.lower()
    if mode == "mock":
        return MockDistributor(balance=settings.MOCK_FAUCET_BALANCE, token=settings.TOKEN_SYMBOL)
    if mode == "relay":
        if not settings.DISTRIBUTOR_URL:
            raise ValueError("DISTRIBUTOR_MODE=relay needs DISTRIBUTOR_URL")
        return RelayDistributor(
            settings.DISTRIBUTOR_URL,
            token=settings.TOKEN_SYMBOL,
            token_address=settings.TOKEN_ADDRESS,
            credential=settings.FAUCET_PRIVATE_KEY,
            timeout=settings.TRANSFER_TIMEOUT_SEC,
        )
    raise ValueError(f"unknown DISTRIBUTOR_MODE: {settings.DISTRIBUTOR_MODE!r}")
