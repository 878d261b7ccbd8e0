"""Registration and authentication ceremonies.

Each ceremony is a two-phase exchange. ``begin_*`` issues a challenge and
returns options for the client; ``complete_*`` consumes that challenge exactly
once, delegates signature checks to the configured :class:`Fido2Verifier` and
persists the outcome. A consumed challenge never returns to the issued state,
so a failed completion requires a fresh ``begin_*``.
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Mapping, Optional

from fido2.utils import websafe_decode, websafe_encode
from sqlalchemy.exc import IntegrityError

from .analytics import PASSKEY, ConversionCounter
from .challenges import Challenge, ChallengeKind, ChallengeStore, Clock
from .config import RPSettings
from .database import Database
from .errors import (
    CeremonyFailedError,
    ChallengeInvalidError,
    CredentialNotFoundError,
    SignCountRegressionError,
    UnknownUserError,
)
from .logs import log_event, new_request_id
from .models import Credential, utcnow
from .services import (
    CredentialRepository,
    ensure_user,
    get_user,
    get_user_by_username,
    touch_last_login,
)
from .verifier import Fido2Verifier, StoredAuthenticator, UserIdentity

LOGGER = logging.getLogger(__name__)

USER_VERIFICATION = "required"

ATTACHMENTS = {
    "platform": "platform",
    "device": "platform",
    "cross-platform": "cross-platform",
    "pin": "cross-platform",
    "both": None,
    None: None,
}


@dataclass
class RegistrationResult:
    user_id: str
    username: str
    credential_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user": {"id": self.user_id, "username": self.username},
            "credentialId": self.credential_id,
        }


@dataclass
class AuthenticationResult:
    user_id: str
    username: str
    credential_id: str
    sign_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user": {"id": self.user_id, "username": self.username},
            "credentialId": self.credential_id,
            "signCount": self.sign_count,
        }


def _stored(credential: Credential) -> StoredAuthenticator:
    return StoredAuthenticator(
        credential_id=credential.credential_id,
        public_key=credential.public_key,
        sign_count=credential.sign_count,
        transports=list(credential.transports or []),
    )


def _response_credential_id(response: Mapping[str, Any]) -> bytes:
    raw = response.get("rawId") or response.get("id")
    if not isinstance(raw, str) or not raw:
        raise CredentialNotFoundError("Credential not found")
    try:
        return websafe_decode(raw)
    except ValueError as exc:
        raise CredentialNotFoundError("Credential not found") from exc


def _response_user_handle(response: Mapping[str, Any]) -> Optional[bytes]:
    handle = (response.get("response") or {}).get("userHandle")
    if not handle:
        return None
    try:
        return websafe_decode(handle)
    except ValueError:
        return b""


class CeremonyOrchestrator:
    def __init__(
        self,
        settings: RPSettings,
        db: Database,
        challenges: ChallengeStore,
        verifier: Fido2Verifier,
        counter: ConversionCounter,
        clock: Clock = utcnow,
    ) -> None:
        self.settings = settings
        self.db = db
        self.challenges = challenges
        self.verifier = verifier
        self.counter = counter
        self._clock = clock

    @property
    def challenge_ttl(self) -> timedelta:
        return timedelta(seconds=self.settings.challenge_ttl_seconds)

    # Registration -----------------------------------------------------
    def begin_registration(
        self,
        identity: str,
        display_name: str,
        attachment_preference: Optional[str] = None,
    ) -> Dict[str, Any]:
        req_id = new_request_id()
        if attachment_preference not in ATTACHMENTS:
            raise ValueError(f"Unknown attachment preference: {attachment_preference}")
        attachment = ATTACHMENTS[attachment_preference]
        log_event(
            LOGGER, "register", "begin.start", req_id,
            user=identity, display=display_name, attachment=attachment,
        )
        with self.db.session() as session:
            user = ensure_user(session, identity, display_name)
            existing = [_stored(c) for c in CredentialRepository(session).find_by_user_id(user.id)]
            subject = UserIdentity(user.id, user.username, user.display_name)
        log_event(LOGGER, "register", "user.ensure", req_id, user_id=subject.user_id)

        challenge = self.challenges.issue(
            ChallengeKind.REGISTRATION,
            subject_user_id=subject.user_id,
            payload={"user_verification": USER_VERIFICATION, "attachment": attachment},
            ttl=self.challenge_ttl,
        )
        options = self.verifier.generate_registration_options(
            subject,
            challenge.value,
            exclude=existing,
            attachment=attachment,
            user_verification=USER_VERIFICATION,
        )
        self.counter.increment("started", PASSKEY)
        log_event(
            LOGGER, "register", "begin.success", req_id,
            user=identity, challenge=challenge.value, credential_count=len(existing),
        )
        return options

    def complete_registration(
        self,
        response: Mapping[str, Any],
        challenge_value: str,
    ) -> RegistrationResult:
        req_id = new_request_id()
        log_event(LOGGER, "register", "complete.start", req_id, challenge=challenge_value)
        challenge = self._consume(challenge_value, ChallengeKind.REGISTRATION, "register", req_id)

        verification = self.verifier.verify_registration_response(
            response,
            challenge.value,
            challenge.payload.get("user_verification", USER_VERIFICATION),
        )
        if not verification.verified:
            log_event(
                LOGGER, "register", "complete.failed", req_id,
                level=logging.WARNING, reason=verification.error,
            )
            raise CeremonyFailedError("Registration verification failed")

        try:
            with self.db.session() as session:
                user = get_user(session, challenge.subject_user_id or "")
                if user is None:
                    raise UnknownUserError("User not found")
                CredentialRepository(session).create(
                    user,
                    verification.credential_id,
                    verification.public_key,
                    sign_count=verification.sign_count,
                    transports=verification.transports,
                )
                result = RegistrationResult(
                    user_id=user.id,
                    username=user.username,
                    credential_id=websafe_encode(verification.credential_id),
                )
        except IntegrityError as exc:
            log_event(
                LOGGER, "register", "complete.failed", req_id,
                level=logging.WARNING, reason="credential already registered",
            )
            raise CeremonyFailedError("Credential already registered") from exc

        self.counter.increment("completed", PASSKEY)
        log_event(
            LOGGER, "register", "complete.success", req_id,
            user=result.username,
            credential_id=result.credential_id,
            sign_count=verification.sign_count,
        )
        return result

    # Authentication ---------------------------------------------------
    def begin_authentication(self, identity: Optional[str] = None) -> Dict[str, Any]:
        req_id = new_request_id()
        log_event(LOGGER, "authn", "begin.start", req_id, user=identity)
        allow: list[StoredAuthenticator] = []
        subject_user_id: Optional[str] = None
        if identity:
            with self.db.session() as session:
                user = get_user_by_username(session, identity)
                if user is None:
                    log_event(
                        LOGGER, "authn", "begin.unknown_user", req_id,
                        level=logging.WARNING, user=identity,
                    )
                    raise UnknownUserError("User not found")
                subject_user_id = user.id
                allow = [_stored(c) for c in CredentialRepository(session).find_by_user_id(user.id)]

        challenge = self.challenges.issue(
            ChallengeKind.AUTHENTICATION,
            subject_user_id=subject_user_id,
            payload={"user_verification": USER_VERIFICATION},
            ttl=self.challenge_ttl,
        )
        options = self.verifier.generate_authentication_options(
            challenge.value, allow=allow, user_verification=USER_VERIFICATION
        )
        options["mode"] = "username" if identity else "usernameless"
        log_event(
            LOGGER, "authn", "begin.success", req_id,
            user=identity, mode=options["mode"], credential_count=len(allow),
        )
        return options

    def complete_authentication(
        self,
        response: Mapping[str, Any],
        challenge_value: str,
    ) -> AuthenticationResult:
        req_id = new_request_id()
        log_event(LOGGER, "authn", "complete.start", req_id, challenge=challenge_value)
        challenge = self._consume(challenge_value, ChallengeKind.AUTHENTICATION, "authn", req_id)
        credential_id = _response_credential_id(response)

        with self.db.session() as session:
            repository = CredentialRepository(session)
            stored = repository.find_by_credential_id(credential_id)
            if stored is None or not self._belongs_to(stored, challenge, response):
                log_event(
                    LOGGER, "authn", "complete.unknown_credential", req_id,
                    level=logging.WARNING, credential_id=websafe_encode(credential_id),
                )
                raise CredentialNotFoundError("Credential not found")

            verification = self.verifier.verify_authentication_response(
                response,
                challenge.value,
                _stored(stored),
                challenge.payload.get("user_verification", USER_VERIFICATION),
            )
            if not verification.verified:
                log_event(
                    LOGGER, "authn", "complete.failed", req_id,
                    level=logging.WARNING, reason=verification.error,
                )
                raise CeremonyFailedError("Authentication verification failed")

            new_count = verification.new_sign_count
            now = self._clock()
            if not repository.update_counter(
                credential_id,
                new_count,
                allow_zero=self.settings.allow_zero_sign_count,
                when=now,
            ):
                log_event(
                    LOGGER, "authn", "complete.counter_regression", req_id,
                    level=logging.ERROR,
                    credential_id=websafe_encode(credential_id),
                    stored=stored.sign_count,
                    reported=new_count,
                )
                raise SignCountRegressionError(
                    "Signature counter did not advance; authenticator may be cloned"
                )
            touch_last_login(session, stored.user_id, now)
            result = AuthenticationResult(
                user_id=stored.user_id,
                username=stored.user.username,
                credential_id=websafe_encode(credential_id),
                sign_count=new_count,
            )

        log_event(
            LOGGER, "authn", "complete.success", req_id,
            user=result.username, credential_id=result.credential_id, sign_count=new_count,
        )
        return result

    # Helpers ----------------------------------------------------------
    def _consume(self, value: str, kind: ChallengeKind, stage: str, req_id: str) -> Challenge:
        try:
            return self.challenges.consume(value, kind)
        except ChallengeInvalidError:
            log_event(
                LOGGER, stage, "complete.invalid_challenge", req_id,
                level=logging.WARNING, challenge=value,
            )
            raise

    @staticmethod
    def _belongs_to(
        credential: Credential,
        challenge: Challenge,
        response: Mapping[str, Any],
    ) -> bool:
        if challenge.subject_user_id and credential.user_id != challenge.subject_user_id:
            return False
        handle = _response_user_handle(response)
        if handle is not None and not hmac.compare_digest(
            handle, credential.user_id.encode("utf-8")
        ):
            return False
        return True
