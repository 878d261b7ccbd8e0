"""Ways of reaching the relying party's ceremony endpoints."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol

import httpx
from passkey_rp.errors import CeremonyError as ServerCeremonyError

from .config import ClientSettings
from .errors import TransportError, error_from_kind

LOGGER = logging.getLogger(__name__)


class RelyingPartyTransport(Protocol):
    def begin_registration(
        self, username: str, display_name: str, attachment_preference: Optional[str] = None
    ) -> Dict[str, Any]:
        ...

    def complete_registration(self, credential: Dict[str, Any], challenge: str) -> Dict[str, Any]:
        ...

    def begin_authentication(self, username: Optional[str] = None) -> Dict[str, Any]:
        ...

    def complete_authentication(self, credential: Dict[str, Any], challenge: str) -> Dict[str, Any]:
        ...


class HttpTransport:
    """JSON over HTTP against the Flask surface."""

    def __init__(
        self,
        settings: Optional[ClientSettings] = None,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.settings = settings or ClientSettings()
        self.client = client or httpx.Client(
            base_url=self.settings.rp_base_url, timeout=self.settings.request_timeout
        )

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self.client.post(path, json=payload)
            body = response.json()
        except httpx.HTTPError as exc:
            raise TransportError(f"Request to {path} failed: {exc}") from exc
        except ValueError as exc:
            raise TransportError(f"Invalid JSON from {path}") from exc
        if not body.get("success"):
            LOGGER.debug("Relying party rejected %s: %s", path, body)
            raise error_from_kind(body.get("error"), body.get("message") or "Request failed")
        return body.get("data") or {}

    def begin_registration(
        self, username: str, display_name: str, attachment_preference: Optional[str] = None
    ) -> Dict[str, Any]:
        payload = {"username": username, "displayName": display_name}
        if attachment_preference:
            payload["attachmentPreference"] = attachment_preference
        return self._post("/api/auth/register/begin", payload)

    def complete_registration(self, credential: Dict[str, Any], challenge: str) -> Dict[str, Any]:
        return self._post(
            "/api/auth/register/complete",
            {"credential": credential, "expectedChallenge": challenge},
        )

    def begin_authentication(self, username: Optional[str] = None) -> Dict[str, Any]:
        return self._post("/api/auth/login/begin", {"username": username} if username else {})

    def complete_authentication(self, credential: Dict[str, Any], challenge: str) -> Dict[str, Any]:
        return self._post(
            "/api/auth/login/complete",
            {"credential": credential, "expectedChallenge": challenge},
        )

    def close(self) -> None:
        self.client.close()


class InProcessTransport:
    """Calls a :class:`passkey_rp.ceremonies.CeremonyOrchestrator` directly."""

    def __init__(self, orchestrator) -> None:
        self.orchestrator = orchestrator

    def _call(self, operation, *args):
        try:
            return operation(*args)
        except ServerCeremonyError as exc:
            raise error_from_kind(exc.kind, str(exc)) from exc

    def begin_registration(
        self, username: str, display_name: str, attachment_preference: Optional[str] = None
    ) -> Dict[str, Any]:
        return self._call(
            self.orchestrator.begin_registration, username, display_name, attachment_preference
        )

    def complete_registration(self, credential: Dict[str, Any], challenge: str) -> Dict[str, Any]:
        return self._call(self.orchestrator.complete_registration, credential, challenge).to_dict()

    def begin_authentication(self, username: Optional[str] = None) -> Dict[str, Any]:
        return self._call(self.orchestrator.begin_authentication, username)

    def complete_authentication(self, credential: Dict[str, Any], challenge: str) -> Dict[str, Any]:
        return self._call(self.orchestrator.complete_authentication, credential, challenge).to_dict()
