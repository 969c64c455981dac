"""Default tuning for the booking simulation."""

from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SEATBOOK_",
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )

    # Cluster
    REPLICA_COUNT: int = 2
    PRIMARY_ID: str = "primary"

    # Simulated latencies (seconds of virtual time)
    RPC_LATENCY_MIN: float = 0.05
    RPC_LATENCY_MAX: float = 0.15
    REPLICATION_DELAY_MIN: float = 0.02
    REPLICATION_DELAY_MAX: float = 0.10
    REPLICATION_FAILURE_RATE: float = 0.05

    # Berkeley synchronization
    SYNC_POLL_DELAY: float = 0.01
    CLOCK_DRIFT_MAX: float = 0.5
    SYNC_FRESHNESS_WINDOW: float = 5.0

    # Seat leases (wall-clock)
    LEASE_TTL_MS: int = 10 * 60 * 1000
    LEDGER_POLL_INTERVAL: float = 5.0

    # Shared ledger store; unset keeps the ledgers inside this process
    REDIS_URL: Optional[str] = None
    REDIS_CHANNEL_PREFIX: str = "seatbook:changed:"

    # Theater layout
    SEAT_ROWS: int = 10
    SEATS_PER_ROW: int = 12

    LOG_LEVEL: str = "INFO"

    @field_validator("REPLICATION_FAILURE_RATE")
    @classmethod
    def check_probability(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("must be between 0 and 1")
        return v

    @field_validator("SEAT_ROWS")
    @classmethod
    def check_rows(cls, v: int) -> int:
        # Row letters run A..Z
        if not 1 <= v <= 26:
            raise ValueError("must be between 1 and 26")
        return v


settings = Settings()
