"""Canonical configuration surface for the custody core."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings

HOUR = 60 * 60
DAY = 24 * HOUR


class CustodySettings(BaseSettings):
    """Custody core configuration.

    All periods are expressed in seconds.
    """

    # Environment
    environment: Literal["dev", "sandbox", "prod"] = "dev"

    # Replay domain mixed into every relayed-call hash
    chain_id: int = 84532

    # Guardian commit-delay-confirm
    security_period: int = Field(default=24 * HOUR, ge=0)
    security_window: int = Field(default=12 * HOUR, gt=0)

    # Lock and recovery
    lock_period: int = Field(default=5 * DAY, gt=0)
    recovery_period: int = Field(default=48 * HOUR, ge=0)

    # Relay refund estimate: base + 16 per calldata byte + per signature
    relay_base_gas: int = Field(default=21000, ge=0)
    signature_gas: int = Field(default=5000, ge=0)

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    class Config:
        env_prefix = "SARDIS_CUSTODY_"
        env_file = ".env"
        extra = "ignore"

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v):
        """Accept lowercase level names from env vars."""
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @model_validator(mode="after")
    def validate_periods(self) -> "CustodySettings":
        # A wallet under recovery must stay locked until it can be finalized.
        if self.lock_period < self.recovery_period:
            raise ValueError(
                "lock_period must be greater than or equal to recovery_period"
            )
        return self


@lru_cache
def load_settings(env_file: str | None = None) -> CustodySettings:
    """Load CustodySettings once per process to keep modules consistent."""
    env_path = Path(env_file) if env_file else None
    return CustodySettings(_env_file=env_path)


__all__ = [
    "HOUR",
    "DAY",
    "CustodySettings",
    "load_settings",
]
