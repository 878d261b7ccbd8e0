"""Device capability detection and authentication method fallback rules."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol, Tuple
from urllib.parse import urlparse

from playwright.sync_api import Page, sync_playwright

from .config import ClientSettings
from .errors import CapabilityDetectionFailedError
from .logs import log_event, new_request_id
from .models import DeviceCapabilities
from .touch import touch_id_available

LOGGER = logging.getLogger(__name__)
COMPONENT = "Auth Client"

PLATFORM_AUTHENTICATOR_SCRIPT = """
async () => {
  if (!window.PublicKeyCredential ||
      !PublicKeyCredential.isUserVerifyingPlatformAuthenticatorAvailable) {
    return false;
  }
  return await PublicKeyCredential.isUserVerifyingPlatformAuthenticatorAvailable();
}
"""


class EnvironmentProbe(Protocol):
    def ceremony_api_present(self) -> bool:
        ...

    def platform_authenticator_available(self) -> bool:
        ...

    def secure_context(self) -> bool:
        ...

    def origin(self) -> str:
        ...


class PageProbe:
    """Probes a browser page through Playwright."""

    def __init__(self, page: Page) -> None:
        self.page = page

    def ceremony_api_present(self) -> bool:
        return bool(self.page.evaluate("() => !!window.PublicKeyCredential"))

    def platform_authenticator_available(self) -> bool:
        return bool(self.page.evaluate(PLATFORM_AUTHENTICATOR_SCRIPT))

    def secure_context(self) -> bool:
        return bool(self.page.evaluate("() => window.isSecureContext"))

    def origin(self) -> str:
        return str(self.page.evaluate("() => window.location.origin"))


class LocalProbe:
    """Probes this host: software authenticators are always reachable,
    the platform authenticator is Touch ID."""

    def __init__(self, settings: Optional[ClientSettings] = None) -> None:
        self.settings = settings or ClientSettings()

    def ceremony_api_present(self) -> bool:
        return True

    def platform_authenticator_available(self) -> bool:
        return touch_id_available()

    def secure_context(self) -> bool:
        return is_https_or_localhost(self.settings.origin)

    def origin(self) -> str:
        return self.settings.origin


def is_https_or_localhost(origin: str) -> bool:
    parsed = urlparse(origin)
    host = parsed.hostname or ""
    return parsed.scheme == "https" or host in ("localhost", "127.0.0.1") or "localhost" in host


def available_methods(ceremony_api: bool, platform: bool) -> Tuple[str, ...]:
    if not ceremony_api:
        return ()
    methods = ["device"] if platform else []
    methods.append("pin")
    if platform:
        methods.append("both")
    return tuple(methods)


class DeviceCapabilityResolver:
    def __init__(self, probe: EnvironmentProbe) -> None:
        self.probe = probe
        self._capabilities: Optional[DeviceCapabilities] = None
        self.last_error: Optional[CapabilityDetectionFailedError] = None

    @property
    def capabilities(self) -> DeviceCapabilities:
        if self._capabilities is None:
            return self.detect_capabilities()
        return self._capabilities

    def detect_capabilities(self) -> DeviceCapabilities:
        req_id = new_request_id()
        self.last_error = None
        try:
            capabilities = self._probe()
        except Exception as exc:
            self.last_error = CapabilityDetectionFailedError(str(exc))
            log_event(
                LOGGER, COMPONENT, "capabilities", "failed", req_id,
                level=logging.WARNING, error=str(exc),
            )
            capabilities = DeviceCapabilities()
        else:
            log_event(
                LOGGER, COMPONENT, "capabilities", "detected", req_id, **capabilities.to_dict()
            )
        self._capabilities = capabilities
        return capabilities

    def _probe(self) -> DeviceCapabilities:
        if not self.probe.ceremony_api_present():
            return DeviceCapabilities()
        platform = bool(self.probe.platform_authenticator_available())
        return DeviceCapabilities(
            ceremony_api_present=True,
            platform_authenticator=platform,
            user_verification=platform,
            secure_context=bool(self.probe.secure_context()),
            https_or_localhost=is_https_or_localhost(self.probe.origin()),
            available_methods=available_methods(True, platform),
        )

    def is_method_available(self, method: str) -> bool:
        return method in self.capabilities.available_methods

    def get_fallback_method(self, primary: str) -> Optional[str]:
        if primary == "device":
            return "pin"
        if primary == "pin" and self.is_method_available("device"):
            return "device"
        return None

    @staticmethod
    def webauthn_options(method: str) -> Dict[str, Any]:
        """Ceremony constraints for a method; ``both`` lets the client decide."""
        if method == "device":
            return {"authenticator_attachment": "platform", "user_verification": "required"}
        if method == "pin":
            return {"authenticator_attachment": "cross-platform", "user_verification": "required"}
        return {"authenticator_attachment": None, "user_verification": "required"}


def probe_url(url: str, headless: bool = True) -> DeviceCapabilities:
    """Open ``url`` in Chromium and detect what the page can use."""
    with sync_playwright() as playwright:
        browser = playwright.chromium.launch(headless=headless)
        try:
            page = browser.new_page()
            page.goto(url)
            return DeviceCapabilityResolver(PageProbe(page)).detect_capabilities()
        finally:
            browser.close()
