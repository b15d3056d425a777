import base64
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from simple_request.models import ApiKeyAuth, Auth, BasicAuth, Collection, KeyValue, Request
from simple_request.core.config import Settings
from simple_request.core.encryption import EncryptionService
from simple_request.core.errors import CorruptImportError, DecryptionError, PersistError
from simple_request.core.secret_store import InMemorySecretStore
from simple_request.core.service import SecretService

BEARER = "tok-bearer-123456"
HEADER_TOKEN = "hdr-secret-abcdef"
BASIC_PASSWORD = "pw-basic-998877"
API_KEY = "apikey-556677"
SECRETS = [BEARER, HEADER_TOKEN, BASIC_PASSWORD, API_KEY]


def make_request(name: str = "Get users") -> Request:
    return Request(
        name=name,
        method="GET",
        url="https://api.example.com/users",
        headers=[
            KeyValue(key="Authorization", value=f"Bearer {HEADER_TOKEN}"),
            KeyValue(key="Accept", value="application/json"),
        ],
        query_params=[KeyValue(key="page", value="1")],
        auth=Auth(
            type="bearer",
            bearer_token=BEARER,
            basic_auth=BasicAuth(username="alice", password=BASIC_PASSWORD),
            api_key=ApiKeyAuth(key="X-Key", value=API_KEY),
        ),
        created_at="2024-01-01T00:00:00+00:00",
        updated_at="2024-01-01T00:00:00+00:00",
    )


def make_collection(name: str = "Users API", requests: int = 1) -> Collection:
    return Collection(
        name=name,
        description="user endpoints",
        requests=[make_request(f"Request {i}") for i in range(requests)],
        created_at="2024-01-01T00:00:00+00:00",
        updated_at="2024-01-01T00:00:00+00:00",
    )


class FakeCipher(EncryptionService):
    """Reversible stand-in for the password cipher; counts calls."""

    def __init__(self):
        self.encrypt_calls = 0
        self.decrypt_calls = 0

    def encrypt(self, data: bytes, password: str) -> str:
        self.encrypt_calls += 1
        return "fake:" + base64.b64encode(password.encode()).decode() + ":" + base64.b64encode(data).decode()

    def decrypt(self, ciphertext: str, password: str) -> bytes:
        self.decrypt_calls += 1
        parts = ciphertext.split(":")
        if len(parts) != 3 or parts[0] != "fake":
            raise CorruptImportError("invalid payload format")
        if base64.b64decode(parts[1]).decode() != password:
            raise DecryptionError("decryption failed")
        return base64.b64decode(parts[2])


class FakePersistence:
    def __init__(self, existing=None, fail_on=None):
        self.existing = list(existing or [])
        self.saved = []
        self.attempts = 0
        self.fail_on = fail_on

    def list_collections(self):
        return [c.model_copy(deep=True) for c in self.existing + self.saved]

    def save_collection(self, collection):
        self.attempts += 1
        if self.fail_on == self.attempts:
            raise PersistError("disk full")
        self.saved.append(collection.model_copy(deep=True))


@pytest.fixture
def store():
    return InMemorySecretStore()


@pytest.fixture
def cipher():
    return FakeCipher()


@pytest.fixture
def persistence():
    return FakePersistence()


@pytest.fixture
def service(store, cipher, persistence):
    svc = SecretService(store, cipher, persistence, settings=Settings(secret_backend="memory"))
    yield svc
    svc.close()
