from __future__ import annotations

import pytest

from passkey_client.errors import (
    AuthenticatorError,
    CapabilityDetectionFailedError,
    CeremonyError,
    CeremonyFailedError,
    ChallengeInvalidError,
    CredentialNotFoundError,
    FallbackFailedError,
    NoFallbackAvailableError,
    UnknownUserError,
    error_category,
    error_from_kind,
)


@pytest.mark.parametrize(
    "kind, cls",
    [
        ("challenge_invalid", ChallengeInvalidError),
        ("ceremony_failed", CeremonyFailedError),
        ("credential_not_found", CredentialNotFoundError),
        ("unknown_user", UnknownUserError),
    ],
)
def test_error_from_kind(kind, cls):
    error = error_from_kind(kind, "boom")

    assert type(error) is cls
    assert error.kind == kind
    assert str(error) == "boom"


def test_unknown_kinds_are_preserved():
    error = error_from_kind("transaction_mismatch", "Transaction ID mismatch")

    assert type(error) is CeremonyError
    assert error.kind == "transaction_mismatch"


@pytest.mark.parametrize(
    "error, category",
    [
        (AuthenticatorError("no platform", reason="not_supported"), "unsupported"),
        (AuthenticatorError("user cancelled", reason="not_allowed"), "cancelled"),
        (AuthenticatorError("bad origin", reason="security"), "security"),
        (AuthenticatorError("excluded", reason="invalid_state"), "failed"),
        (NoFallbackAvailableError("none"), "unsupported"),
        (CapabilityDetectionFailedError("crash"), "unsupported"),
        (ChallengeInvalidError("expired"), "failed"),
        (ValueError("anything"), "failed"),
    ],
)
def test_error_category(error, category):
    assert error_category(error) == category


def test_fallback_failure_is_categorised_by_its_last_cause():
    error = FallbackFailedError(
        CeremonyFailedError("primary"),
        AuthenticatorError("declined", reason="not_allowed"),
        "pin",
    )

    assert error_category(error) == "cancelled"
    assert "primary" in str(error) and "declined" in str(error)
