"""ES256 software authenticator that mimics navigator.credentials flows."""

from __future__ import annotations

import hashlib
import logging
import secrets
import sys
from typing import Dict, List, Literal, Optional

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from fido2.cose import ES256

from .config import ClientSettings
from .errors import AuthenticatorError, CredentialNotFoundError
from .logs import log_event, new_request_id
from .models import (
    CredentialRecord,
    PubKeyCredParam,
    PublicKeyCredentialCreationOptions,
    PublicKeyCredentialRequestOptions,
    b64url_decode,
    b64url_encode,
    encode_client_data,
)
from .storage import CredentialStore
from .touch import NoopVerifier, TouchIDVerifier, UserVerificationError, UserVerifier
from .webauthn import (
    build_attestation_object,
    build_authenticator_data,
    build_credential_public_key,
)

LOGGER = logging.getLogger(__name__)
COMPONENT = "Authenticator"

Attachment = Literal["platform", "cross-platform"]

TRANSPORTS = {"platform": ["internal"], "cross-platform": ["usb"]}


def _default_verifier(attachment: str) -> UserVerifier:
    if attachment == "platform" and sys.platform == "darwin":
        return TouchIDVerifier()
    return NoopVerifier()


class SoftwareAuthenticator:
    """Creates and exercises ES256 credentials held in the keychain.

    ``available=False`` models a host without this kind of authenticator
    (no platform biometrics, no security key plugged in); every ceremony
    then fails the way a browser reports ``NotSupportedError``.
    """

    def __init__(
        self,
        settings: Optional[ClientSettings] = None,
        attachment: Attachment = "cross-platform",
        credential_store: Optional[CredentialStore] = None,
        user_verifier: Optional[UserVerifier] = None,
        available: bool = True,
    ) -> None:
        self.settings = settings or ClientSettings()
        self.attachment = attachment
        self.store = credential_store or CredentialStore(self.settings, namespace=attachment)
        self.user_verifier = user_verifier or _default_verifier(attachment)
        self.available = available

    # ------------------------------------------------------------------
    def make_credential(self, options_data: Dict, origin: Optional[str] = None) -> Dict:
        self._ensure_available()
        options = PublicKeyCredentialCreationOptions.model_validate(options_data)
        req_id = new_request_id()
        resolved_origin = origin or self.settings.origin
        log_event(
            LOGGER, COMPONENT, "register", "start", req_id,
            user=options.user.name, attachment=self.attachment, origin=resolved_origin,
        )
        requested = options.authenticatorSelection.authenticatorAttachment
        if requested and requested != self.attachment:
            raise AuthenticatorError(
                f"Relying party requested a {requested} authenticator", reason="not_supported"
            )
        for descriptor in options.excludeCredentials:
            if self.store.contains(descriptor.id, options.rp.id):
                log_event(
                    LOGGER, COMPONENT, "register", "exclude.hit", req_id,
                    level=logging.WARNING, user=options.user.name,
                )
                raise AuthenticatorError(
                    "Credential creation excluded by RP", reason="invalid_state"
                )
        alg = self._select_algorithm(options.pubKeyCredParams)
        self._verify_user(f"Register {options.user.displayName}")

        private_key = ec.generate_private_key(ec.SECP256R1())
        record = CredentialRecord(
            credential_id=b64url_encode(secrets.token_bytes(32)),
            user_handle=options.user.id,
            rp_id=options.rp.id,
            algorithm=alg,
            private_key=b64url_encode(
                private_key.private_bytes(
                    serialization.Encoding.DER,
                    serialization.PrivateFormat.PKCS8,
                    serialization.NoEncryption(),
                )
            ),
            discoverable=options.authenticatorSelection.discoverable,
            user_name=options.user.name,
        )
        auth_data = build_authenticator_data(
            rp_id=options.rp.id,
            sign_count=record.sign_count,
            credential_id=b64url_decode(record.credential_id),
            credential_public_key=build_credential_public_key(private_key.public_key()),
        )
        client_data = encode_client_data("webauthn.create", options.challenge, resolved_origin)
        self.store.save(record)

        log_event(
            LOGGER, COMPONENT, "register", "success", req_id,
            user=options.user.name, credential_id=record.credential_id, algorithm=alg,
        )
        return {
            "id": record.credential_id,
            "rawId": record.credential_id,
            "type": "public-key",
            "authenticatorAttachment": self.attachment,
            "response": {
                "clientDataJSON": b64url_encode(client_data),
                "attestationObject": b64url_encode(build_attestation_object(auth_data)),
                "transports": TRANSPORTS[self.attachment],
            },
            "clientExtensionResults": {},
        }

    # ------------------------------------------------------------------
    def get_assertion(self, options_data: Dict, origin: Optional[str] = None) -> Dict:
        self._ensure_available()
        options = PublicKeyCredentialRequestOptions.model_validate(options_data)
        req_id = new_request_id()
        resolved_origin = origin or self.settings.origin
        log_event(
            LOGGER, COMPONENT, "authn", "start", req_id,
            rp_id=options.rpId, allowed=len(options.allowCredentials), attachment=self.attachment,
        )
        record = self._locate_credential(options)
        if record is None:
            log_event(
                LOGGER, COMPONENT, "authn", "no_credential", req_id,
                level=logging.WARNING, rp_id=options.rpId,
            )
            raise CredentialNotFoundError("No credential available for assertion")
        self._verify_user("Sign in")

        record.sign_count += 1
        auth_data = build_authenticator_data(rp_id=options.rpId, sign_count=record.sign_count)
        client_data = encode_client_data("webauthn.get", options.challenge, resolved_origin)
        private_key = serialization.load_der_private_key(b64url_decode(record.private_key), None)
        signature = private_key.sign(
            auth_data + hashlib.sha256(client_data).digest(), ec.ECDSA(hashes.SHA256())
        )
        self.store.save(record)

        log_event(
            LOGGER, COMPONENT, "authn", "success", req_id,
            credential_id=record.credential_id, sign_count=record.sign_count,
        )
        return {
            "id": record.credential_id,
            "rawId": record.credential_id,
            "type": "public-key",
            "authenticatorAttachment": self.attachment,
            "response": {
                "clientDataJSON": b64url_encode(client_data),
                "authenticatorData": b64url_encode(auth_data),
                "signature": b64url_encode(signature),
                "userHandle": record.user_handle,
            },
            "clientExtensionResults": {},
        }

    # Helpers -----------------------------------------------------------
    def _ensure_available(self) -> None:
        if not self.available:
            raise AuthenticatorError(
                f"No {self.attachment} authenticator available", reason="not_supported"
            )

    def _verify_user(self, prompt: str) -> None:
        try:
            self.user_verifier.verify_user(prompt)
        except UserVerificationError as exc:
            LOGGER.error("User verification failed: %s", exc)
            raise AuthenticatorError(str(exc), reason="not_allowed") from exc

    @staticmethod
    def _select_algorithm(params: List[PubKeyCredParam]) -> int:
        for param in params:
            if param.alg == ES256.ALGORITHM:
                return param.alg
        raise AuthenticatorError("No supported algorithm in pubKeyCredParams", reason="not_supported")

    def _locate_credential(
        self, options: PublicKeyCredentialRequestOptions
    ) -> Optional[CredentialRecord]:
        if options.allowCredentials:
            return self.store.find_first([c.id for c in options.allowCredentials], options.rpId)
        matches = self.store.find_discoverable(options.rpId)
        return matches[0] if matches else None
