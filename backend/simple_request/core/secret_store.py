"""Secret store backends.

The core only talks to the :class:`SecretStore` interface. Values and their
metadata are kept apart: values live in the backend (OS keychain, encrypted
file, memory), metadata in a JSON reference index next to the workspace.

Built-in backends:

* ``FileSecretStore``: values AES-GCM encrypted under the workspace master key
* ``KeyringSecretStore``: OS keychain via the ``keyring`` package
* ``InMemorySecretStore``: process memory only
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from simple_request.models import SecretReference
from simple_request.core.config import Settings, load_master_key
from simple_request.core.crypto import CryptoError, decrypt_value, encrypt_value
from simple_request.core.errors import StoreError
from simple_request.core.storage import atomic_write

logger = logging.getLogger(__name__)


class SecretStore(ABC):
    """Persists individual secret values and their reference metadata."""

    @abstractmethod
    def store(self, secret_id: str, name: str, value: str, kind: str):
        """Store a value under an id, replacing any previous reference with that id."""

    @abstractmethod
    def get(self, secret_id: str) -> Optional[str]:
        """Return the value, or ``None`` when the id is unknown."""

    @abstractmethod
    def list_references(self) -> List[SecretReference]:
        ...

    @abstractmethod
    def delete(self, secret_id: str):
        ...

    @abstractmethod
    def touch_last_used(self, secret_id: str, timestamp: str):
        ...


class ReferenceIndex:
    """Ordered list of SecretReference, persisted as JSON when a path is given."""

    def __init__(self, path: Optional[Path] = None):
        self.path = path
        self._lock = threading.Lock()
        self._refs: List[SecretReference] = self._load()

    def _load(self) -> List[SecretReference]:
        if self.path is None or not self.path.exists():
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return [SecretReference.model_validate(r) for r in json.load(f)]
        except (OSError, ValueError) as exc:
            logger.warning("failed to load secret references from %s: %s", self.path, exc)
            return []

    def _save(self):
        if self.path is None:
            return
        try:
            atomic_write(self.path, [r.to_wire() for r in self._refs])
        except OSError as exc:
            raise StoreError(f"failed to write reference index: {exc}") from exc

    def upsert(self, reference: SecretReference):
        with self._lock:
            self._refs = [r for r in self._refs if r.id != reference.id]
            self._refs.append(reference)
            self._save()

    def remove(self, secret_id: str):
        with self._lock:
            self._refs = [r for r in self._refs if r.id != secret_id]
            self._save()

    def touch(self, secret_id: str, timestamp: str):
        with self._lock:
            for ref in self._refs:
                if ref.id == secret_id:
                    ref.last_used = timestamp
                    self._save()
                    return

    def all(self) -> List[SecretReference]:
        with self._lock:
            return [r.model_copy() for r in self._refs]


class InMemorySecretStore(SecretStore):
    def __init__(self):
        self._values: Dict[str, str] = {}
        self._lock = threading.Lock()
        self.index = ReferenceIndex()

    def store(self, secret_id: str, name: str, value: str, kind: str):
        with self._lock:
            self._values[secret_id] = value
        self.index.upsert(SecretReference(id=secret_id, name=name, kind=kind))

    def get(self, secret_id: str) -> Optional[str]:
        with self._lock:
            return self._values.get(secret_id)

    def list_references(self) -> List[SecretReference]:
        return self.index.all()

    def delete(self, secret_id: str):
        with self._lock:
            self._values.pop(secret_id, None)
        self.index.remove(secret_id)

    def touch_last_used(self, secret_id: str, timestamp: str):
        self.index.touch(secret_id, timestamp)


class FileSecretStore(SecretStore):
    """
    Values encrypted one by one with the workspace master key in
    secrets.json; metadata in secret_references.json.
    """

    def __init__(self, data_dir: Path, master_key: bytes):
        self.data_dir = Path(data_dir)
        self.values_path = self.data_dir / "secrets.json"
        self.master_key = master_key
        self.index = ReferenceIndex(self.data_dir / "secret_references.json")
        self._lock = threading.Lock()

    def _load_values(self) -> Dict[str, str]:
        if not self.values_path.exists():
            return {}
        try:
            with open(self.values_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            raise StoreError(f"failed to read {self.values_path.name}: {exc}") from exc
        return data if isinstance(data, dict) else {}

    def _save_values(self, values: Dict[str, str]):
        try:
            atomic_write(self.values_path, values)
        except OSError as exc:
            raise StoreError(f"failed to write {self.values_path.name}: {exc}") from exc

    def store(self, secret_id: str, name: str, value: str, kind: str):
        with self._lock:
            values = self._load_values()
            values[secret_id] = encrypt_value(value, self.master_key)
            self._save_values(values)
        self.index.upsert(SecretReference(id=secret_id, name=name, kind=kind))

    def get(self, secret_id: str) -> Optional[str]:
        with self._lock:
            ciphertext = self._load_values().get(secret_id)
        if ciphertext is None:
            return None
        try:
            return decrypt_value(ciphertext, self.master_key)
        except CryptoError as exc:
            raise StoreError(f"secret {secret_id} cannot be decrypted: {exc}") from exc

    def list_references(self) -> List[SecretReference]:
        return self.index.all()

    def delete(self, secret_id: str):
        with self._lock:
            values = self._load_values()
            if values.pop(secret_id, None) is not None:
                self._save_values(values)
        self.index.remove(secret_id)

    def touch_last_used(self, secret_id: str, timestamp: str):
        self.index.touch(secret_id, timestamp)


class KeyringSecretStore(SecretStore):
    """Values in the platform keychain, one entry per secret id."""

    SERVICE_PREFIX = "simple-request-secret-"

    def __init__(self, data_dir: Path):
        self.index = ReferenceIndex(Path(data_dir) / "secret_references.json")

    def _service(self, secret_id: str) -> str:
        return f"{self.SERVICE_PREFIX}{secret_id}"

    def store(self, secret_id: str, name: str, value: str, kind: str):
        try:
            keyring.set_password(self._service(secret_id), secret_id, value)
        except KeyringError as exc:
            raise StoreError(f"failed to store secret in keychain: {exc}") from exc
        self.index.upsert(SecretReference(id=secret_id, name=name, kind=kind))

    def get(self, secret_id: str) -> Optional[str]:
        try:
            return keyring.get_password(self._service(secret_id), secret_id)
        except KeyringError as exc:
            raise StoreError(f"failed to read secret from keychain: {exc}") from exc

    def list_references(self) -> List[SecretReference]:
        return self.index.all()

    def delete(self, secret_id: str):
        try:
            keyring.delete_password(self._service(secret_id), secret_id)
        except PasswordDeleteError:
            logger.debug("secret %s was not in the keychain", secret_id)
        except KeyringError as exc:
            raise StoreError(f"failed to delete secret from keychain: {exc}") from exc
        self.index.remove(secret_id)

    def touch_last_used(self, secret_id: str, timestamp: str):
        self.index.touch(secret_id, timestamp)


def create_secret_store(settings: Settings) -> SecretStore:
    backend = settings.secret_backend
    if backend == "memory":
        return InMemorySecretStore()
    if backend == "keyring":
        return KeyringSecretStore(settings.data_dir)
    return FileSecretStore(settings.data_dir, load_master_key(settings))

