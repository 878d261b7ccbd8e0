from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pytest

from passkey_rp.analytics import ConversionCounter
from passkey_rp.ceremonies import CeremonyOrchestrator
from passkey_rp.challenges import InMemoryChallengeStore
from passkey_rp.config import RPSettings
from passkey_rp.database import Database
from passkey_rp.stepup import StepUpEngine
from passkey_rp.verifier import (
    AuthenticationVerification,
    RegistrationVerification,
    StoredAuthenticator,
    UserIdentity,
)


class MutableClock:
    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class FakeVerifier:
    """Verifier stand-in; tests set the next verdicts explicitly."""

    def __init__(self) -> None:
        self.registration = RegistrationVerification(
            verified=True,
            credential_id=b"cred-1",
            public_key=b"public-key",
            sign_count=0,
            transports=["internal"],
        )
        self.authentication = AuthenticationVerification(verified=True, new_sign_count=1)
        self.registration_options: List[Dict[str, Any]] = []
        self.authentication_options: List[Dict[str, Any]] = []

    def generate_registration_options(
        self,
        user: UserIdentity,
        challenge: str,
        exclude: Sequence[StoredAuthenticator] = (),
        attachment: Optional[str] = None,
        user_verification: str = "required",
    ) -> Dict[str, Any]:
        options = {
            "challenge": challenge,
            "user": {"id": user.user_id, "name": user.username},
            "excludeCredentials": [c.credential_id for c in exclude],
            "authenticatorSelection": {"authenticatorAttachment": attachment},
        }
        self.registration_options.append(options)
        return options

    def verify_registration_response(self, response, expected_challenge, user_verification="required"):
        return self.registration

    def generate_authentication_options(
        self,
        challenge: str,
        allow: Sequence[StoredAuthenticator] = (),
        user_verification: str = "required",
    ) -> Dict[str, Any]:
        options = {"challenge": challenge, "allowCredentials": [c.credential_id for c in allow]}
        self.authentication_options.append(options)
        return options

    def verify_authentication_response(
        self, response, expected_challenge, authenticator, user_verification="required"
    ):
        return self.authentication


class CapturingOtpSender:
    def __init__(self) -> None:
        self.sent: Dict[str, str] = {}

    def send(self, user_id: str, transaction_id: str, otp: str) -> None:
        self.sent[transaction_id] = otp


@pytest.fixture
def settings(tmp_path: Path) -> RPSettings:
    return RPSettings(
        database_url=f"sqlite:///{tmp_path / 'rp.db'}",
        challenge_backend="memory",
    )


@pytest.fixture
def db(settings: RPSettings) -> Database:
    database = Database(settings)
    database.create_all()
    return database


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture
def challenges(clock: MutableClock) -> InMemoryChallengeStore:
    return InMemoryChallengeStore(clock=clock)


@pytest.fixture
def counter() -> ConversionCounter:
    return ConversionCounter()


@pytest.fixture
def verifier() -> FakeVerifier:
    return FakeVerifier()


@pytest.fixture
def orchestrator(settings, db, challenges, verifier, counter, clock) -> CeremonyOrchestrator:
    return CeremonyOrchestrator(settings, db, challenges, verifier, counter, clock=clock)


@pytest.fixture
def otp_sender() -> CapturingOtpSender:
    return CapturingOtpSender()


@pytest.fixture
def engine(settings, db, challenges, counter, otp_sender, clock) -> StepUpEngine:
    return StepUpEngine(settings, db, challenges, counter, otp_sender=otp_sender, clock=clock)
