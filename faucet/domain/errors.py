from __future__ import annotations

from typing import Any, Dict, Optional


class FaucetError(Exception):
    """Base for errors that cross the HTTP boundary.

    ``message`` is what the client sees; ``detail`` is for operators only and
    is never serialized.
    """

    code = "FAUCET_ERROR"
    http_status = 500
    message = "Internal faucet error"

    def __init__(self, detail: str = "", message: Optional[str] = None):
        super().__init__(detail or self.message)
        self.detail = detail
        if message is not None:
            self.message = message

    def to_response(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code}


class ValidationError(FaucetError):
    code = "INVALID_ADDRESS"
    http_status = 400
    message = "Invalid address"


class ThrottleError(FaucetError):
    code = "THROTTLED"
    http_status = 429

    def __init__(self, remaining_ms: int):
        self.remaining_ms = max(0, int(remaining_ms))
        hours = self.remaining_ms / (60 * 60 * 1000)
        self.remaining_hours = f"{hours:.2f}"
        super().__init__(
            detail=f"cooldown active, {self.remaining_ms}ms left",
            message=f"Already claimed. Try again in ~{self.remaining_hours} hours.",
        )

    def to_response(self) -> Dict[str, Any]:
        body = super().to_response()
        body["remainingHours"] = self.remaining_hours
        return body


class FundingError(FaucetError):
    code = "FAUCET_EMPTY"
    http_status = 503
    message = "Faucet is empty"


class TransferError(FaucetError):
    code = "TRANSFER_FAILED"
    http_status = 500
    message = "Internal faucet error"


class StoreError(FaucetError):
    """Persistence backend unreachable or returned something unexpected."""

    code = "STORE_UNAVAILABLE"
    http_status = 503
    message = "Faucet temporarily unavailable"
