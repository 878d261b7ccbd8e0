"""Persisted authentication preference backed by the system keychain."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

import keyring
from keyring.errors import PasswordDeleteError

from .config import ClientSettings
from .models import DEFAULT_METHOD, METHODS

LOGGER = logging.getLogger(__name__)


class PreferenceStore:
    """A single ``device | pin | both`` slot per client install."""

    def __init__(self, settings: Optional[ClientSettings] = None) -> None:
        self.settings = settings or ClientSettings()
        self.service = self.settings.keyring_service
        self.key = self.settings.preference_key

    def _stored(self) -> Optional[str]:
        return keyring.get_password(self.service, self.key)

    def get(self) -> str:
        value = self._stored()
        if value not in METHODS:
            return DEFAULT_METHOD
        return value

    def set(self, method: str) -> None:
        if method not in METHODS:
            raise ValueError(f"Unknown authentication method: {method}")
        keyring.set_password(self.service, self.key, method)

    def clear(self) -> None:
        try:
            keyring.delete_password(self.service, self.key)
        except PasswordDeleteError:
            pass

    @contextmanager
    def override(self, method: str) -> Iterator[str]:
        """Temporarily persist ``method``; the saved value is restored on exit."""
        saved = self._stored()
        self.set(method)
        try:
            yield method
        finally:
            if saved is None:
                self.clear()
            else:
                keyring.set_password(self.service, self.key, saved)
            LOGGER.debug("Restored authentication preference to %s", saved or DEFAULT_METHOD)
