from fastapi import Request

from faucet.config import Settings
from faucet.domain.coordinator import ClaimCoordinator


def get_coordinator(request: Request) -> ClaimCoordinator:
    return request.app.state.coordinator


def get_settings(request: Request) -> Settings:
    return request.app.state.settings
