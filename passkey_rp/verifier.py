"""FIDO2 verification adapter.

The ceremony orchestrator never inspects signatures itself. It hands the
expected challenge and the stored authenticator material to a
:class:`Fido2Verifier` and consumes a typed verdict. :class:`Fido2ServerVerifier`
implements the protocol on top of ``fido2.server.Fido2Server``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

import fido2.features
from fido2.server import Fido2Server
from fido2.utils import websafe_decode, websafe_encode
from fido2.webauthn import (
    AttestedCredentialData,
    AuthenticationResponse,
    AuthenticatorAttachment,
    AuthenticatorTransport,
    PublicKeyCredentialDescriptor,
    PublicKeyCredentialRpEntity,
    PublicKeyCredentialType,
    PublicKeyCredentialUserEntity,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from .config import RPSettings

LOGGER = logging.getLogger(__name__)

# Responses arrive as WebAuthn JSON (base64url fields). The flag can only be
# set once per process; when the host already set it, it must be on.
try:
    fido2.features.webauthn_json_mapping.enabled = True
except ValueError:
    fido2.features.webauthn_json_mapping.require()

_KNOWN_TRANSPORTS = {transport.value for transport in AuthenticatorTransport}


@dataclass
class UserIdentity:
    user_id: str
    username: str
    display_name: str


@dataclass
class StoredAuthenticator:
    credential_id: bytes
    public_key: bytes
    sign_count: int
    transports: List[str] = field(default_factory=list)


@dataclass
class RegistrationVerification:
    verified: bool
    credential_id: bytes = b""
    public_key: bytes = b""
    sign_count: int = 0
    transports: List[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class AuthenticationVerification:
    verified: bool
    credential_id: bytes = b""
    new_sign_count: int = 0
    error: Optional[str] = None


class Fido2Verifier(Protocol):
    def generate_registration_options(
        self,
        user: UserIdentity,
        challenge: str,
        exclude: Sequence[StoredAuthenticator] = (),
        attachment: Optional[str] = None,
        user_verification: str = "required",
    ) -> Dict[str, Any]:
        ...

    def verify_registration_response(
        self,
        response: Mapping[str, Any],
        expected_challenge: str,
        user_verification: str = "required",
    ) -> RegistrationVerification:
        ...

    def generate_authentication_options(
        self,
        challenge: str,
        allow: Sequence[StoredAuthenticator] = (),
        user_verification: str = "required",
    ) -> Dict[str, Any]:
        ...

    def verify_authentication_response(
        self,
        response: Mapping[str, Any],
        expected_challenge: str,
        authenticator: StoredAuthenticator,
        user_verification: str = "required",
    ) -> AuthenticationVerification:
        ...


def to_json(value: Any) -> Any:
    """Flatten fido2 data objects into JSON friendly structures."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (bytes, bytearray)):
        return websafe_encode(bytes(value))
    if isinstance(value, Mapping):
        return {key: to_json(item) for key, item in value.items() if item is not None}
    if isinstance(value, (list, tuple)):
        return [to_json(item) for item in value]
    return value


def _descriptors(
    authenticators: Sequence[StoredAuthenticator],
) -> List[PublicKeyCredentialDescriptor]:
    descriptors = []
    for item in authenticators:
        transports = [
            AuthenticatorTransport(t) for t in item.transports if t in _KNOWN_TRANSPORTS
        ]
        descriptors.append(
            PublicKeyCredentialDescriptor(
                type=PublicKeyCredentialType.PUBLIC_KEY,
                id=item.credential_id,
                transports=transports or None,
            )
        )
    return descriptors


def _state(challenge: str, user_verification: str) -> Dict[str, Any]:
    return {
        "challenge": challenge,
        "user_verification": UserVerificationRequirement(user_verification),
    }


class Fido2ServerVerifier:
    def __init__(self, settings: RPSettings) -> None:
        self.settings = settings
        self.server = Fido2Server(
            PublicKeyCredentialRpEntity(name=settings.rp_name, id=settings.rp_id),
            verify_origin=self._verify_origin,
        )
        self.server.timeout = settings.ceremony_timeout_ms

    def _verify_origin(self, origin: str) -> bool:
        return origin == self.settings.origin

    def generate_registration_options(
        self,
        user: UserIdentity,
        challenge: str,
        exclude: Sequence[StoredAuthenticator] = (),
        attachment: Optional[str] = None,
        user_verification: str = "required",
    ) -> Dict[str, Any]:
        options, _ = self.server.register_begin(
            PublicKeyCredentialUserEntity(
                id=user.user_id.encode("utf-8"),
                name=user.username,
                display_name=user.display_name,
            ),
            credentials=_descriptors(exclude),
            resident_key_requirement=ResidentKeyRequirement.PREFERRED,
            user_verification=UserVerificationRequirement(user_verification),
            authenticator_attachment=AuthenticatorAttachment(attachment) if attachment else None,
            challenge=websafe_decode(challenge),
        )
        return to_json(options.public_key)

    def verify_registration_response(
        self,
        response: Mapping[str, Any],
        expected_challenge: str,
        user_verification: str = "required",
    ) -> RegistrationVerification:
        try:
            auth_data = self.server.register_complete(
                _state(expected_challenge, user_verification), dict(response)
            )
        except (ValueError, KeyError, TypeError) as exc:
            LOGGER.warning("Registration response rejected: %s", exc)
            return RegistrationVerification(verified=False, error=str(exc))
        credential_data = auth_data.credential_data
        transports = (response.get("response") or {}).get("transports") or []
        return RegistrationVerification(
            verified=True,
            credential_id=bytes(credential_data.credential_id),
            public_key=bytes(credential_data),
            sign_count=auth_data.counter,
            transports=[str(t) for t in transports],
        )

    def generate_authentication_options(
        self,
        challenge: str,
        allow: Sequence[StoredAuthenticator] = (),
        user_verification: str = "required",
    ) -> Dict[str, Any]:
        options, _ = self.server.authenticate_begin(
            credentials=_descriptors(allow),
            user_verification=UserVerificationRequirement(user_verification),
            challenge=websafe_decode(challenge),
        )
        request_options = to_json(options.public_key)
        request_options.setdefault("allowCredentials", [])
        return request_options

    def verify_authentication_response(
        self,
        response: Mapping[str, Any],
        expected_challenge: str,
        authenticator: StoredAuthenticator,
        user_verification: str = "required",
    ) -> AuthenticationVerification:
        try:
            self.server.authenticate_complete(
                _state(expected_challenge, user_verification),
                [AttestedCredentialData(authenticator.public_key)],
                dict(response),
            )
            parsed = AuthenticationResponse.from_dict(dict(response))
        except (ValueError, KeyError, TypeError) as exc:
            LOGGER.warning("Authentication response rejected: %s", exc)
            return AuthenticationVerification(verified=False, error=str(exc))
        return AuthenticationVerification(
            verified=True,
            credential_id=authenticator.credential_id,
            new_sign_count=parsed.response.authenticator_data.counter,
        )
