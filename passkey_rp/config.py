"""Pydantic based configuration for the RP server."""

from __future__ import annotations

from decimal import Decimal
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DATA_DIR = Path(__file__).resolve().parent / "data"
DEFAULT_DB_PATH = DATA_DIR / "rp.db"


class RPSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="RP_")

    database_url: str = Field(
        default=f"sqlite:///{DEFAULT_DB_PATH}",
        description="SQLAlchemy connection string used by the RP server",
    )
    rp_id: str = Field(default="localhost", description="Relying Party identifier")
    rp_name: str = Field(default="Modern Auth Demo", description="Human readable RP name")
    origin: str = Field(
        default="http://localhost:3000",
        description="Expected origin for clientDataJSON validation",
    )
    challenge_backend: Literal["memory", "database"] = Field(
        default="database",
        description="Where pending challenges live; database is shared across instances",
    )
    challenge_ttl_seconds: int = Field(
        default=300, description="Lifetime of registration and authentication challenges"
    )
    ceremony_timeout_ms: int = Field(
        default=60_000, description="Timeout hint sent to the client with ceremony options"
    )
    allow_zero_sign_count: bool = Field(
        default=True,
        description="Accept authenticators that always report a signature counter of zero",
    )
    stepup_threshold: Decimal = Field(
        default=Decimal("150"),
        description="Transactions strictly above this amount require step-up",
    )
    default_currency: str = Field(default="EUR")
    otp_length: int = Field(default=6, ge=4, le=10)
    otp_ttl_seconds: int = Field(default=300, description="Lifetime of a step-up OTP")
    pending_transaction_ttl_seconds: Optional[int] = Field(
        default=None,
        description="Fail step-up transactions left pending longer than this; None keeps them pending",
    )
    sweep_interval_seconds: float = Field(
        default=3600.0, description="Interval between expired challenge sweeps"
    )
    cors_origins: list[str] = Field(
        default_factory=lambda: [
            "http://localhost:3000",
            "http://localhost:3001",
            "http://127.0.0.1:3000",
        ]
    )
