from __future__ import annotations

import hashlib
import secrets

import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec

from passkey_client.models import b64url_encode, encode_client_data
from passkey_client.webauthn import (
    build_attestation_object,
    build_authenticator_data,
    build_credential_public_key,
)
from passkey_rp.ceremonies import CeremonyOrchestrator
from passkey_rp.errors import CeremonyFailedError, SignCountRegressionError
from passkey_rp.verifier import Fido2ServerVerifier


class EcKey:
    """One ES256 credential answering ceremonies with WebAuthn JSON."""

    def __init__(self, rp_id: str, origin: str) -> None:
        self.rp_id = rp_id
        self.origin = origin
        self.private_key = ec.generate_private_key(ec.SECP256R1())
        self.credential_id = secrets.token_bytes(32)
        self.user_handle = ""
        self.sign_count = 0

    def attest(self, options):
        self.user_handle = options["user"]["id"]
        auth_data = build_authenticator_data(
            rp_id=self.rp_id,
            sign_count=self.sign_count,
            credential_id=self.credential_id,
            credential_public_key=build_credential_public_key(self.private_key.public_key()),
        )
        client_data = encode_client_data("webauthn.create", options["challenge"], self.origin)
        return {
            "id": b64url_encode(self.credential_id),
            "rawId": b64url_encode(self.credential_id),
            "type": "public-key",
            "response": {
                "clientDataJSON": b64url_encode(client_data),
                "attestationObject": b64url_encode(build_attestation_object(auth_data)),
                "transports": ["internal"],
            },
            "clientExtensionResults": {},
        }

    def assert_(self, options, origin=None):
        self.sign_count += 1
        auth_data = build_authenticator_data(rp_id=self.rp_id, sign_count=self.sign_count)
        client_data = encode_client_data(
            "webauthn.get", options["challenge"], origin or self.origin
        )
        signature = self.private_key.sign(
            auth_data + hashlib.sha256(client_data).digest(), ec.ECDSA(hashes.SHA256())
        )
        return {
            "id": b64url_encode(self.credential_id),
            "rawId": b64url_encode(self.credential_id),
            "type": "public-key",
            "response": {
                "clientDataJSON": b64url_encode(client_data),
                "authenticatorData": b64url_encode(auth_data),
                "signature": b64url_encode(signature),
                "userHandle": self.user_handle,
            },
            "clientExtensionResults": {},
        }


@pytest.fixture
def real_orchestrator(settings, db, challenges, counter, clock) -> CeremonyOrchestrator:
    return CeremonyOrchestrator(
        settings, db, challenges, Fido2ServerVerifier(settings), counter, clock=clock
    )


@pytest.fixture
def key(settings) -> EcKey:
    return EcKey(settings.rp_id, settings.origin)


def _register(orchestrator, key, username="mia@example.com"):
    options = orchestrator.begin_registration(username, "Mia", "platform")
    return orchestrator.complete_registration(key.attest(options), options["challenge"])


def test_registration_options_are_webauthn_json(real_orchestrator, settings):
    options = real_orchestrator.begin_registration("mia@example.com", "Mia", "platform")

    assert isinstance(options["challenge"], str)
    assert isinstance(options["user"]["id"], str)
    assert options["rp"] == {"name": settings.rp_name, "id": settings.rp_id}
    assert options["authenticatorSelection"]["authenticatorAttachment"] == "platform"
    assert options["authenticatorSelection"]["userVerification"] == "required"
    assert {"type": "public-key", "alg": -7} in options["pubKeyCredParams"]


def test_registration_and_authentication_round_trip(real_orchestrator, key):
    registered = _register(real_orchestrator, key)

    options = real_orchestrator.begin_authentication("mia@example.com")
    assert options["allowCredentials"][0]["id"] == registered.credential_id
    result = real_orchestrator.complete_authentication(key.assert_(options), options["challenge"])

    assert result.username == "mia@example.com"
    assert result.sign_count == 1


def test_second_registration_excludes_existing_credential(real_orchestrator, key):
    registered = _register(real_orchestrator, key)

    options = real_orchestrator.begin_registration("mia@example.com", "Mia")

    assert [c["id"] for c in options["excludeCredentials"]] == [registered.credential_id]


def test_foreign_origin_is_rejected(real_orchestrator, key):
    _register(real_orchestrator, key)
    options = real_orchestrator.begin_authentication("mia@example.com")

    with pytest.raises(CeremonyFailedError):
        real_orchestrator.complete_authentication(
            key.assert_(options, origin="https://evil.example"), options["challenge"]
        )


def test_replayed_counter_is_rejected(real_orchestrator, key):
    _register(real_orchestrator, key)
    options = real_orchestrator.begin_authentication("mia@example.com")
    real_orchestrator.complete_authentication(key.assert_(options), options["challenge"])
    key.sign_count = 0

    options = real_orchestrator.begin_authentication("mia@example.com")
    with pytest.raises(SignCountRegressionError):
        real_orchestrator.complete_authentication(key.assert_(options), options["challenge"])


def test_attestation_for_another_challenge_fails(real_orchestrator, key):
    first = real_orchestrator.begin_registration("mia@example.com", "Mia")
    second = real_orchestrator.begin_registration("mia@example.com", "Mia")

    with pytest.raises(CeremonyFailedError):
        real_orchestrator.complete_registration(key.attest(first), second["challenge"])
