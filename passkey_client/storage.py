"""Software authenticator credential storage backed by the keychain via keyring."""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import keyring
from keyring.errors import PasswordDeleteError

from .config import ClientSettings
from .models import CredentialRecord


class CredentialStoreError(RuntimeError):
    pass


class CredentialStore:
    """Private keys live in the keychain; a JSON index maps ids to rp and user.

    ``namespace`` keeps authenticators with different attachments apart so a
    platform authenticator never signs with a security key's credential.
    """

    def __init__(self, settings: ClientSettings, namespace: str = "default") -> None:
        self.settings = settings
        self.service = f"{settings.keyring_service}.{namespace}"
        base = Path(settings.credential_index_path).expanduser()
        self.index_path = base.with_name(f"{base.stem}.{namespace}{base.suffix or '.json'}")
        self._lock = threading.Lock()
        self.index_path.parent.mkdir(parents=True, exist_ok=True)
        if not self.index_path.exists():
            self._write_index({})

    # Index helpers -----------------------------------------------------
    def _read_index(self) -> Dict[str, Dict[str, object]]:
        if not self.index_path.exists():
            return {}
        return json.loads(self.index_path.read_text())

    def _write_index(self, data: Dict[str, Dict[str, object]]) -> None:
        self.index_path.write_text(json.dumps(data, indent=2))

    # CRUD --------------------------------------------------------------
    def save(self, record: CredentialRecord) -> CredentialRecord:
        keyring.set_password(self.service, record.credential_id, record.encode())
        with self._lock:
            index = self._read_index()
            index[record.credential_id] = {
                "user_handle": record.user_handle,
                "rp_id": record.rp_id,
                "discoverable": record.discoverable,
            }
            self._write_index(index)
        return record

    def delete(self, credential_id: str) -> None:
        try:
            keyring.delete_password(self.service, credential_id)
        except PasswordDeleteError:
            pass
        with self._lock:
            index = self._read_index()
            if index.pop(credential_id, None) is not None:
                self._write_index(index)

    def load(self, credential_id: str) -> CredentialRecord:
        serialized = keyring.get_password(self.service, credential_id)
        if serialized is None:
            raise CredentialStoreError(f"Credential {credential_id} not found")
        return CredentialRecord.decode(serialized)

    def contains(self, credential_id: str, rp_id: str) -> bool:
        metadata = self._read_index().get(credential_id)
        return metadata is not None and metadata.get("rp_id") == rp_id

    def list_all(self) -> List[CredentialRecord]:
        return [self.load(cred_id) for cred_id in self._read_index()]

    def find_discoverable(self, rp_id: str) -> List[CredentialRecord]:
        return [
            self.load(credential_id)
            for credential_id, metadata in self._read_index().items()
            if metadata.get("rp_id") == rp_id and metadata.get("discoverable")
        ]

    def find_first(self, allow_credentials: Iterable[str], rp_id: str) -> Optional[CredentialRecord]:
        for cred_id in allow_credentials:
            if not self.contains(cred_id, rp_id):
                continue
            try:
                return self.load(cred_id)
            except CredentialStoreError:
                continue
        return None
