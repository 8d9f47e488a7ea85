from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    APP_ENV: str = "development"
    ALLOWED_ORIGINS: str = "http://127.0.0.1:8000,http://localhost:8000"
    ADMIN_API_KEY: str = "change-me"
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"

    # ledger / token
    NETWORK: str = "arb-sepolia"
    FAUCET_PRIVATE_KEY: str | None = None
    TOKEN_ADDRESS: str = "0x0000000000000000000000000000000000000000"
    TOKEN_SYMBOL: str = "SLR"
    TOKEN_DECIMALS: int = 18
    CLAIM_AMOUNT: str = "5"

    # claim admission
    CLAIM_INTERVAL_HOURS: float = 12.0
    RESERVATION_TIMEOUT_SEC: float = 120.0
    TRANSFER_TIMEOUT_SEC: float = 30.0
    COMMIT_RETRIES: int = 3
    COMMIT_RETRY_DELAY_SEC: float = 0.2

    # persistence: memory / redis / file / kv
    CLAIM_STORE: str = "memory"
    REDIS_URL: str | None = None
    CLAIM_STORE_PATH: str = "data/claims.json"
    KV_REST_API_URL: str | None = None
    KV_REST_API_TOKEN: str | None = None
    KEY_PREFIX: str = "faucet:claim:"

    # distributor: mock / relay
    DISTRIBUTOR_MODE: str = "mock"
    DISTRIBUTOR_URL: str | None = None
    MOCK_FAUCET_BALANCE: str = "1000"

    # rate limit
    PUBLIC_RATE_LIMIT: str = "10/minute"
    ADMIN_RATE_LIMIT: str = "20/minute"

    @property
    def cooldown_ms(self) -> int:
        return int(self.CLAIM_INTERVAL_HOURS * 60 * 60 * 1000)

    @property
    def reservation_timeout_ms(self) -> int:
        return int(self.RESERVATION_TIMEOUT_SEC * 1000)

    @property
    def claim_amount(self) -> Decimal:
        return Decimal(self.CLAIM_AMOUNT)


settings = Settings()
