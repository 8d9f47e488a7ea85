from typing import Optional

from pydantic import AliasChoices, BaseModel, Field


class ClaimIn(BaseModel):
    address: str = Field(
        ...,
        validation_alias=AliasChoices("address", "identity"),
        description="Wallet address to receive the tokens",
    )


class ClaimOut(BaseModel):
    dispatched: bool = True
    receipt: str
    txHash: str
    amount: str
    token: str


class StatusOut(BaseModel):
    status: str
    network: str
    token: str
    symbol: str
    fundingLevel: Optional[str] = None


class ClaimRecordOut(BaseModel):
    identity: str
    state: Optional[str] = None
    lastClaimAt: Optional[int] = None
    previousClaimAt: Optional[int] = None
