"""Configuration for the passkey client."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DATA_DIR = Path(__file__).resolve().parent / "data"


class ClientSettings(BaseSettings):
    """Runtime settings for the client and its software authenticators."""

    model_config = SettingsConfigDict(env_prefix="PASSKEY_CLIENT_")

    keyring_service: str = Field(
        default="passkey-stepup-client",
        description="Service name used for keychain entries",
    )
    credential_index_path: str = Field(
        default=str((DATA_DIR / "credential_index.json").resolve()),
        description="Path to the credential index file used for lookups",
    )
    preference_key: str = Field(
        default="auth-preference",
        description="Keychain entry holding the persisted authentication preference",
    )
    origin: str = Field(
        default="http://localhost:3000",
        description="Origin reported in clientDataJSON",
    )
    rp_base_url: str = Field(default="http://localhost:3001")
    request_timeout: float = Field(default=10.0, gt=0)
