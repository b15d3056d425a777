import asyncio
import json
import os

import keyring
import pytest
from keyring.errors import PasswordDeleteError

from conftest import BEARER, HEADER_TOKEN, make_collection
from simple_request.models import Collection, KeyValue, Request
from simple_request.core.config import Settings, load_master_key
from simple_request.core.errors import PersistError
from simple_request.core.secret_store import (
    FileSecretStore,
    InMemorySecretStore,
    KeyringSecretStore,
    create_secret_store,
)
from simple_request.core.secret_transformers import (
    request_contains_encrypted_values,
    transform_request_for_decryption,
    transform_request_for_encryption,
)
from simple_request.core.service import mask_secret
from simple_request.core.storage import WorkspaceStorage


def test_file_store_encrypts_values_and_survives_restart(tmp_path):
    master = os.urandom(32)
    store = FileSecretStore(tmp_path, master)
    store.store("id-1", "Users token", "s3cr3t-value", "api-key")

    assert "s3cr3t-value" not in (tmp_path / "secrets.json").read_text()
    refs = json.loads((tmp_path / "secret_references.json").read_text())
    assert refs[0]["id"] == "id-1" and refs[0]["type"] == "api-key"

    reopened = FileSecretStore(tmp_path, master)
    assert reopened.get("id-1") == "s3cr3t-value"
    assert [r.name for r in reopened.list_references()] == ["Users token"]

    reopened.touch_last_used("id-1", "2025-01-01T00:00:00+00:00")
    assert reopened.list_references()[0].last_used == "2025-01-01T00:00:00+00:00"

    reopened.delete("id-1")
    assert reopened.get("id-1") is None
    assert reopened.list_references() == []


def test_store_replaces_reference_with_same_id():
    store = InMemorySecretStore()
    store.store("id-1", "first", "a", "custom")
    store.store("id-1", "second", "b", "custom")
    assert store.get("id-1") == "b"
    assert [r.name for r in store.list_references()] == ["second"]


def test_keyring_store(tmp_path, monkeypatch):
    vault = {}

    def set_password(service, user, value):
        vault[(service, user)] = value

    def delete_password(service, user):
        if (service, user) not in vault:
            raise PasswordDeleteError("not found")
        del vault[(service, user)]

    monkeypatch.setattr(keyring, "set_password", set_password)
    monkeypatch.setattr(keyring, "get_password", lambda service, user: vault.get((service, user)))
    monkeypatch.setattr(keyring, "delete_password", delete_password)

    store = KeyringSecretStore(tmp_path)
    store.store("id-1", "token", "kc-value", "bearer-token")
    assert vault[("simple-request-secret-id-1", "id-1")] == "kc-value"
    assert store.get("id-1") == "kc-value"
    assert KeyringSecretStore(tmp_path).list_references()[0].kind == "bearer-token"

    store.delete("id-1")
    store.delete("id-1")
    assert store.get("id-1") is None
    assert store.list_references() == []


def test_create_secret_store_by_backend(tmp_path):
    assert isinstance(create_secret_store(Settings(workspace_dir=tmp_path, secret_backend="memory")), InMemorySecretStore)
    assert isinstance(create_secret_store(Settings(workspace_dir=tmp_path, secret_backend="keyring")), KeyringSecretStore)
    assert isinstance(create_secret_store(Settings(workspace_dir=tmp_path)), FileSecretStore)


def test_master_key_is_generated_once(tmp_path):
    settings = Settings(workspace_dir=tmp_path)
    first = load_master_key(settings)
    assert len(first) == 32
    assert load_master_key(settings) == first
    assert load_master_key(Settings(workspace_dir=tmp_path, master_key="ab" * 32)) == bytes.fromhex("ab" * 32)


def test_settings_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("SIMPLE_REQUEST_WORKSPACE", str(tmp_path))
    monkeypatch.setenv("SIMPLE_REQUEST_SECRET_BACKEND", "memory")
    monkeypatch.setenv("SIMPLE_REQUEST_CACHE_TTL", "12.5")
    settings = Settings.from_env()
    assert settings.workspace_dir == tmp_path
    assert settings.secret_backend == "memory"
    assert settings.cache_ttl_seconds == 12.5
    assert Settings.from_env(workspace_dir="/elsewhere").workspace_dir.as_posix() == "/elsewhere"


def test_request_secrets_encrypted_at_rest():
    master = os.urandom(32)
    req = Request(headers=[KeyValue(key="Authorization", value="Bearer token"), KeyValue(key="X-Trace", value="abc")])

    enc = transform_request_for_encryption(req, master)
    assert request_contains_encrypted_values(enc)
    assert enc.headers[1].value == "abc"
    assert req.headers[0].value == "Bearer token"

    # A renamed header still decrypts.
    enc.headers[0].key = "X-Renamed"
    dec = transform_request_for_decryption(enc, master)
    assert dec.headers[0].value == "Bearer token"


def test_workspace_storage_round_trip_without_plaintext(tmp_path):
    storage = WorkspaceStorage(tmp_path, master_key=os.urandom(32))
    col = make_collection("Stored")
    storage.save_collection(col)

    raw = (tmp_path / "collections" / f"{col.id}.json").read_text()
    assert BEARER not in raw and HEADER_TOKEN not in raw
    assert '"name": "Stored"' in raw

    loaded = storage.load_collection(col.id)
    assert loaded.requests[0].auth.bearer_token == BEARER
    assert [c.id for c in storage.list_collections()] == [col.id]

    storage.delete_collection(col.id)
    assert storage.list_collections() == []


def test_workspace_storage_skips_unreadable_files(tmp_path):
    storage = WorkspaceStorage(tmp_path)
    (tmp_path / "collections" / "broken.json").write_text("{not json")
    storage.save_collection(Collection(name="Fine"))
    assert [c.name for c in storage.list_collections()] == ["Fine"]


def test_workspace_storage_failure_is_a_persist_error(tmp_path):
    storage = WorkspaceStorage(tmp_path)
    col = Collection(name="Blocked")
    # A directory in place of the target file makes the atomic rename fail.
    (tmp_path / "collections" / f"{col.id}.json").mkdir()
    with pytest.raises(PersistError):
        storage.save_collection(col)


def test_mask_secret():
    assert mask_secret("abcd1234wxyz") == "abcd••••wxyz"
    assert mask_secret("short") == "••••••••"
    assert mask_secret(None) == "••••••••"
    assert mask_secret("a" * 4 + "b" * 40 + "c" * 4) == "aaaa" + "•" * 12 + "cccc"


def test_service_secret_lifecycle(service, store):
    ref = asyncio.run(service.store_secret("Staging key", "stg-123456", "api-key"))
    assert ref.name == "Staging key" and ref.kind == "api-key"
    assert asyncio.run(service.get_secret(ref.id)) == "stg-123456"
    assert ref.id in service.cache._entries

    asyncio.run(service.store_secret("Staging key", "stg-rotated", "api-key", secret_id=ref.id))
    assert ref.id not in service.cache._entries
    assert asyncio.run(service.get_secret(ref.id)) == "stg-rotated"

    asyncio.run(service.delete_secret(ref.id))
    assert asyncio.run(service.get_secret(ref.id)) is None
    assert store.list_references() == []
