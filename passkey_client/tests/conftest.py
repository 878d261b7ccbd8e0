from __future__ import annotations

from pathlib import Path
from typing import Dict, Tuple

import pytest

from passkey_client.authenticator import SoftwareAuthenticator
from passkey_client.capabilities import DeviceCapabilityResolver
from passkey_client.config import ClientSettings
from passkey_client.preferences import PreferenceStore
from passkey_client.service import MultiModalAuthClient
from passkey_client.touch import NoopVerifier
from passkey_client.transport import InProcessTransport
from passkey_rp.app import build_components
from passkey_rp.config import RPSettings


class StaticProbe:
    def __init__(
        self,
        api: bool = True,
        platform: bool = False,
        secure: bool = True,
        origin: str = "http://localhost:3000",
        error: Exception | None = None,
    ) -> None:
        self.api = api
        self.platform = platform
        self.secure = secure
        self._origin = origin
        self.error = error
        self.calls: list[str] = []

    def ceremony_api_present(self) -> bool:
        self.calls.append("api")
        return self.api

    def platform_authenticator_available(self) -> bool:
        self.calls.append("platform")
        if self.error is not None:
            raise self.error
        return self.platform

    def secure_context(self) -> bool:
        self.calls.append("secure")
        return self.secure

    def origin(self) -> str:
        self.calls.append("origin")
        return self._origin


@pytest.fixture(autouse=True)
def fake_keyring(monkeypatch):
    storage: Dict[Tuple[str, str], str] = {}

    def set_password(service: str, username: str, password: str) -> None:
        storage[(service, username)] = password

    def get_password(service: str, username: str) -> str | None:
        return storage.get((service, username))

    def delete_password(service: str, username: str) -> None:
        storage.pop((service, username), None)

    monkeypatch.setattr("passkey_client.storage.keyring.set_password", set_password)
    monkeypatch.setattr("passkey_client.storage.keyring.get_password", get_password)
    monkeypatch.setattr("passkey_client.storage.keyring.delete_password", delete_password)
    yield storage


@pytest.fixture
def temp_settings(tmp_path: Path) -> ClientSettings:
    return ClientSettings(
        keyring_service="test-service",
        credential_index_path=str(tmp_path / "index.json"),
        origin="http://localhost:3000",
    )


@pytest.fixture
def rp(tmp_path: Path):
    settings = RPSettings(
        database_url=f"sqlite:///{tmp_path / 'rp.db'}",
        challenge_backend="memory",
        origin="http://localhost:3000",
        rp_id="localhost",
    )
    return build_components(settings)


@pytest.fixture
def preferences(temp_settings) -> PreferenceStore:
    return PreferenceStore(temp_settings)


def make_authenticators(settings: ClientSettings, platform_available: bool):
    return {
        "platform": SoftwareAuthenticator(
            settings,
            attachment="platform",
            user_verifier=NoopVerifier(),
            available=platform_available,
        ),
        "cross-platform": SoftwareAuthenticator(
            settings, attachment="cross-platform", user_verifier=NoopVerifier()
        ),
    }


@pytest.fixture
def make_client(rp, temp_settings, preferences):
    def factory(platform: bool = False, transport=None) -> MultiModalAuthClient:
        return MultiModalAuthClient(
            transport or InProcessTransport(rp.ceremonies),
            DeviceCapabilityResolver(StaticProbe(platform=platform)),
            preferences,
            make_authenticators(temp_settings, platform),
            origin=temp_settings.origin,
        )

    return factory


@pytest.fixture
def static_probe():
    return StaticProbe
