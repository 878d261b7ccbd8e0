"""Passkey client: capability detection, method fallback and a software authenticator."""

from .authenticator import SoftwareAuthenticator
from .capabilities import DeviceCapabilityResolver, LocalProbe, PageProbe
from .config import ClientSettings
from .errors import error_category
from .preferences import PreferenceStore
from .service import MultiModalAuthClient
from .transport import HttpTransport, InProcessTransport

__all__ = [
    "ClientSettings",
    "DeviceCapabilityResolver",
    "HttpTransport",
    "InProcessTransport",
    "LocalProbe",
    "MultiModalAuthClient",
    "PageProbe",
    "PreferenceStore",
    "SoftwareAuthenticator",
    "error_category",
]
