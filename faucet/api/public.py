from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Depends, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from faucet.api.deps import get_coordinator, get_settings
from faucet.config import Settings, settings
from faucet.domain.claims import Dispatched, Throttled, TransferFailed, Underfunded
from faucet.domain.coordinator import ClaimCoordinator
from faucet.domain.errors import FundingError, ThrottleError, TransferError, ValidationError
from faucet.domain.models import ClaimIn, ClaimOut, StatusOut
from faucet.integrations.distributor import DistributorError
from faucet.security.address import is_address, normalize_identity

router = APIRouter(prefix="/api", tags=["faucet"])
limiter = Limiter(key_func=get_remote_address)
logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


@router.post("/faucet", response_model=ClaimOut)
@limiter.limit(lambda: settings.PUBLIC_RATE_LIMIT)
async def claim(
    request: Request,
    body: ClaimIn,
    coordinator: ClaimCoordinator = Depends(get_coordinator),
):
    """
    Send CLAIM_AMOUNT tokens to the address, at most once per CLAIM_INTERVAL_HOURS.
    400 bad address / 429 cooldown / 503 faucet empty / 500 transfer failed
    """
    if not is_address(body.address):
        raise ValidationError(detail=f"rejected address {body.address!r}")

    identity = normalize_identity(body.address)
    outcome = await coordinator.request_claim(identity, now_ms())

    if isinstance(outcome, Dispatched):
        receipt = outcome.receipt
        return ClaimOut(
            receipt=receipt.tx_hash,
            txHash=receipt.tx_hash,
            amount=str(receipt.amount),
            token=receipt.token,
        )
    if isinstance(outcome, Throttled):
        raise ThrottleError(outcome.remaining_ms)
    if isinstance(outcome, Underfunded):
        raise FundingError(detail=f"balance {outcome.balance} below {coordinator.amount}")
    if isinstance(outcome, TransferFailed):
        raise TransferError(detail=outcome.cause)
    raise TransferError(detail=f"unexpected outcome {outcome!r}")


@router.get("/faucet", response_model=StatusOut)
async def status(
    coordinator: ClaimCoordinator = Depends(get_coordinator),
    cfg: Settings = Depends(get_settings),
):
    # read only: never touches the claim store
    try:
        funding = str(await coordinator.funding_level())
        state = "ok"
    except DistributorError:
        logger.exception("funding level unavailable")
        funding, state = None, "degraded"

    return StatusOut(
        status=state,
        network=cfg.NETWORK,
        token=cfg.TOKEN_ADDRESS,
        symbol=cfg.TOKEN_SYMBOL,
        fundingLevel=funding,
    )
