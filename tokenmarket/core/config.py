from enum import StrEnum

from pydantic_settings import BaseSettings


class Environment(StrEnum):
    development = "development"
    production = "production"


class Settings(BaseSettings):
    ENV: Environment = Environment.development
    LOG_LEVEL: str = "INFO"

    # Ledger relay
    LEDGER_URL: str = "http://127.0.0.1:8545"
    LEDGER_EVENTS_URL: str = "ws://127.0.0.1:8546"  # "" disables the listener
    CONTRACT_ADDRESS: str = ""
    ACCOUNT: str = ""
    REQUEST_TIMEOUT: float = 30.0

    # Off-chain metadata store
    METADATA_URL: str = "http://localhost:3001"
    METADATA_STORAGE_DIR: str = "public"
    METADATA_PORT: int = 3001

    # Reconciliation
    TICK_INTERVAL: float = 1.0
    REFRESH_INTERVAL: float = 30.0  # 0 disables periodic polling
    FETCH_CONCURRENCY: int = 8

    @property
    def is_production(self) -> bool:
        return self.ENV == Environment.production


settings = Settings()
