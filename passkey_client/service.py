"""Client side ceremonies with a single automatic fallback between methods."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Mapping, Optional

from .authenticator import SoftwareAuthenticator
from .capabilities import DeviceCapabilityResolver
from .errors import (
    AuthenticatorError,
    CeremonyError,
    CeremonyFailedError,
    CredentialNotFoundError,
    FallbackFailedError,
    NoFallbackAvailableError,
)
from .logs import log_event, new_request_id
from .models import CeremonyResult
from .preferences import PreferenceStore
from .transport import RelyingPartyTransport

LOGGER = logging.getLogger(__name__)
COMPONENT = "Auth Client"

FALLBACK_TRIGGERS = (CeremonyFailedError, CredentialNotFoundError)

Attempt = Callable[[str], Dict[str, Any]]


class MultiModalAuthClient:
    """Runs registration and authentication through the preferred method.

    A :data:`FALLBACK_TRIGGERS` failure leads to exactly one retry with the
    resolver's fallback method. The persisted preference is switched to the
    fallback for the retry and always restored afterwards.
    """

    def __init__(
        self,
        transport: RelyingPartyTransport,
        resolver: DeviceCapabilityResolver,
        preferences: PreferenceStore,
        authenticators: Mapping[str, SoftwareAuthenticator],
        origin: Optional[str] = None,
    ) -> None:
        self.transport = transport
        self.resolver = resolver
        self.preferences = preferences
        self.authenticators = dict(authenticators)
        self.origin = origin

    # Preference -------------------------------------------------------
    def get_preference(self) -> str:
        return self.preferences.get()

    def set_preference(self, method: str) -> bool:
        """Persist ``method`` when this device can use it."""
        if not self.resolver.is_method_available(method):
            return False
        self.preferences.set(method)
        return True

    # Ceremonies -------------------------------------------------------
    def register(
        self,
        email: str,
        display_name: Optional[str] = None,
        method: Optional[str] = None,
    ) -> CeremonyResult:
        return self._run(
            "register", method, lambda m: self._register_once(email, display_name or email, m)
        )

    def authenticate(self, email: Optional[str] = None, method: Optional[str] = None) -> CeremonyResult:
        return self._run("authn", method, lambda m: self._authenticate_once(email, m))

    def _run(self, stage: str, method: Optional[str], attempt: Attempt) -> CeremonyResult:
        capabilities = self.resolver.detect_capabilities()
        if not capabilities.available_methods:
            raise NoFallbackAvailableError(
                "No authentication method is available on this device"
            ) from self.resolver.last_error
        primary = method or self.preferences.get()
        try:
            return CeremonyResult(method=primary, data=attempt(primary))
        except FALLBACK_TRIGGERS as exc:
            req_id = new_request_id()
            fallback = self.resolver.get_fallback_method(primary)
            if fallback is None or not self.resolver.is_method_available(fallback):
                log_event(
                    LOGGER, COMPONENT, "fallback", "none", req_id,
                    level=logging.WARNING, ceremony=stage, method=primary, error=str(exc),
                )
                raise
            log_event(
                LOGGER, COMPONENT, "fallback", "start", req_id,
                ceremony=stage, method=primary, fallback=fallback, error=str(exc),
            )
            original = exc

        with self.preferences.override(fallback):
            try:
                data = attempt(fallback)
            except CeremonyError as retry_exc:
                log_event(
                    LOGGER, COMPONENT, "fallback", "failed", req_id,
                    level=logging.WARNING, ceremony=stage, fallback=fallback, error=str(retry_exc),
                )
                raise FallbackFailedError(original, retry_exc, fallback) from retry_exc
        log_event(LOGGER, COMPONENT, "fallback", "success", req_id, ceremony=stage, fallback=fallback)
        return CeremonyResult(method=fallback, data=data, used_fallback=True, fallback_method=fallback)

    def _register_once(self, email: str, display_name: str, method: str) -> Dict[str, Any]:
        authenticator = self._authenticator_for(method)
        options = self.transport.begin_registration(email, display_name, method)
        credential = authenticator.make_credential(options, origin=self.origin)
        return self.transport.complete_registration(credential, options["challenge"])

    def _authenticate_once(self, email: Optional[str], method: str) -> Dict[str, Any]:
        authenticator = self._authenticator_for(method)
        options = self.transport.begin_authentication(email)
        credential = authenticator.get_assertion(options, origin=self.origin)
        return self.transport.complete_authentication(credential, options["challenge"])

    def _authenticator_for(self, method: str) -> SoftwareAuthenticator:
        attachment = self.resolver.webauthn_options(method)["authenticator_attachment"]
        if attachment is None:
            for candidate in ("platform", "cross-platform"):
                authenticator = self.authenticators.get(candidate)
                if authenticator is not None and authenticator.available:
                    return authenticator
            raise AuthenticatorError("No authenticator available", reason="not_supported")
        authenticator = self.authenticators.get(attachment)
        if authenticator is None:
            raise AuthenticatorError(f"No {attachment} authenticator available", reason="not_supported")
        return authenticator
