from abc import ABC, abstractmethod

from simple_request.core.crypto import CorruptPayloadError, CryptoError, decrypt_bytes, encrypt_bytes
from simple_request.core.errors import CorruptImportError, DecryptionError, EncryptError


class EncryptionService(ABC):
    """Password-based encryption of an opaque payload."""

    @abstractmethod
    def encrypt(self, data: bytes, password: str) -> str:
        ...

    @abstractmethod
    def decrypt(self, ciphertext: str, password: str) -> bytes:
        ...


class PasswordCipher(EncryptionService):
    """PBKDF2-SHA512 key derivation with a per-export salt, AES-256-GCM payload."""

    def encrypt(self, data: bytes, password: str) -> str:
        try:
            return encrypt_bytes(data, password)
        except CryptoError as exc:
            raise EncryptError(str(exc)) from exc

    def decrypt(self, ciphertext: str, password: str) -> bytes:
        try:
            return decrypt_bytes(ciphertext, password)
        except CorruptPayloadError as exc:
            raise CorruptImportError(str(exc)) from exc
        except CryptoError as exc:
            raise DecryptionError(str(exc)) from exc
