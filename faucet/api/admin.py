from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from faucet.api.deps import get_coordinator, get_settings
from faucet.config import Settings, settings
from faucet.domain.coordinator import ClaimCoordinator
from faucet.domain.models import ClaimRecordOut
from faucet.security.address import is_address, normalize_identity
from faucet.security.api_key import require_admin_api_key


router = APIRouter(prefix="/api/admin", tags=["admin"])
limiter = Limiter(key_func=get_remote_address)


@router.get("/config")
@limiter.limit(lambda: settings.ADMIN_RATE_LIMIT)
def admin_config(
    request: Request,
    _=Depends(require_admin_api_key),
    cfg: Settings = Depends(get_settings),
):
    # don't leak secrets
    return {
        "env": cfg.APP_ENV,
        "allowed_origins": cfg.ALLOWED_ORIGINS,
        "ledger": {
            "network": cfg.NETWORK,
            "token_address": cfg.TOKEN_ADDRESS,
            "token_symbol": cfg.TOKEN_SYMBOL,
            "token_decimals": cfg.TOKEN_DECIMALS,
            "distributor": cfg.DISTRIBUTOR_MODE,
        },
        "claims": {
            "amount": cfg.CLAIM_AMOUNT,
            "interval_hours": cfg.CLAIM_INTERVAL_HOURS,
            "reservation_timeout_sec": cfg.RESERVATION_TIMEOUT_SEC,
            "transfer_timeout_sec": cfg.TRANSFER_TIMEOUT_SEC,
            "store": cfg.CLAIM_STORE,
        },
    }


@router.get("/claims/{address}", response_model=ClaimRecordOut)
@limiter.limit(lambda: settings.ADMIN_RATE_LIMIT)
def claim_record(
    request: Request,
    address: str,
    _=Depends(require_admin_api_key),
    coordinator: ClaimCoordinator = Depends(get_coordinator),
):
    if not is_address(address):
        raise HTTPException(status_code=400, detail="Invalid address")
    identity = normalize_identity(address)
    record = coordinator.store.get(identity)
    if record is None:
        return ClaimRecordOut(identity=identity)
    return ClaimRecordOut(
        identity=identity,
        state=record.state.value,
        lastClaimAt=record.last_claim_at,
        previousClaimAt=record.previous_claim_at,
    )


@router.get("/reconciliation")
@limiter.limit(lambda: settings.ADMIN_RATE_LIMIT)
def reconciliation(
    request: Request,
    _=Depends(require_admin_api_key),
    coordinator: ClaimCoordinator = Depends(get_coordinator),
):
    events = coordinator.reconciliation.events()
    return {"count": len(events), "events": [e.to_dict() for e in events]}
