"""AES-256-GCM encryption of exchange files and local secrets.

Ciphertexts are self-describing strings::

    enc:v1|<kdf>|<iterations>|<salt b64>|<iv b64>|<ciphertext+tag b64>

``kdf`` is ``pbkdf2-sha512`` when the key was derived from a password (export
files), or ``master`` when a raw 32-byte key was used (local vault). Master
payloads carry no salt and zero iterations.
"""

import base64
import binascii
import secrets
from typing import NamedTuple, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

PREFIX = "enc:"
VERSION = "v1"
KDF_NAME = "pbkdf2-sha512"
MASTER_MODE = "master"
KDF_ITERS = 600_000
KEY_LEN = 32
SALT_LEN = 16
IV_LEN = 12

Key = Union[str, bytes]


class CryptoError(Exception):
    pass


class CorruptPayloadError(CryptoError):
    """The ciphertext could not be parsed; no key would ever open it."""


def _b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def _unb64(text: str) -> bytes:
    return base64.b64decode(text, validate=True) if text else b""


class EncryptedPayload(NamedTuple):
    kdf: str
    iterations: int
    salt: bytes
    iv: bytes
    ciphertext: bytes

    def dumps(self) -> str:
        fields = [VERSION, self.kdf, str(self.iterations), _b64(self.salt), _b64(self.iv), _b64(self.ciphertext)]
        return PREFIX + "|".join(fields)

    @classmethod
    def loads(cls, value: str) -> "EncryptedPayload":
        if not is_encrypted_string(value):
            raise CorruptPayloadError("not encrypted")
        parts = value[len(PREFIX):].split("|")
        if len(parts) != 6:
            raise CorruptPayloadError("invalid payload format")
        version, kdf, iterations, salt, iv, ciphertext = parts
        if version != VERSION:
            raise CorruptPayloadError(f"unsupported version {version!r}")
        if kdf not in (KDF_NAME, MASTER_MODE):
            raise CorruptPayloadError(f"unsupported kdf {kdf!r}")
        try:
            payload = cls(kdf, int(iterations), _unb64(salt), _unb64(iv), _unb64(ciphertext))
        except (ValueError, binascii.Error) as exc:
            raise CorruptPayloadError("invalid payload encoding") from exc
        payload._check()
        return payload

    def _check(self):
        if self.kdf == KDF_NAME and (len(self.salt) != SALT_LEN or self.iterations != KDF_ITERS):
            raise CorruptPayloadError("invalid salt/iteration")
        if len(self.iv) != IV_LEN:
            raise CorruptPayloadError("invalid iv length")


def _derive_key(password: str, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(algorithm=hashes.SHA512(), length=KEY_LEN, salt=salt, iterations=KDF_ITERS)
    return kdf.derive(password.encode("utf-8"))


def is_encrypted_string(value) -> bool:
    return isinstance(value, str) and value.startswith(PREFIX)


def normalize_master_key(key: Key) -> bytes:
    """Accept a raw key or its hex form; anything not 32 bytes long is rejected."""
    if isinstance(key, str):
        try:
            key = bytes.fromhex(key)
        except ValueError as exc:
            raise CryptoError("invalid master key encoding") from exc
    if len(key) != KEY_LEN:
        raise CryptoError("invalid master key length")
    return key


def encrypt_bytes(data: bytes, key: Key) -> str:
    """A str key is a password (fresh salt, PBKDF2); bytes are a master key."""
    iv = secrets.token_bytes(IV_LEN)
    if isinstance(key, str):
        salt = secrets.token_bytes(SALT_LEN)
        aes_key, kdf, iterations = _derive_key(key, salt), KDF_NAME, KDF_ITERS
    else:
        salt = b""
        aes_key, kdf, iterations = normalize_master_key(key), MASTER_MODE, 0
    ciphertext = AESGCM(aes_key).encrypt(iv, data, None)
    return EncryptedPayload(kdf, iterations, salt, iv, ciphertext).dumps()


def encrypt_value(plaintext: str, key: Key) -> str:
    return encrypt_bytes(plaintext.encode("utf-8"), key)


def decrypt_bytes(encrypted: str, key: Key) -> bytes:
    payload = EncryptedPayload.loads(encrypted)
    if payload.kdf == MASTER_MODE:
        aes_key = normalize_master_key(key)
    elif isinstance(key, str):
        aes_key = _derive_key(key, payload.salt)
    else:
        raise CryptoError("password required for password-derived ciphertext")
    try:
        return AESGCM(aes_key).decrypt(payload.iv, payload.ciphertext, None)
    except InvalidTag as exc:
        raise CryptoError("decryption failed") from exc


def decrypt_value(encrypted: str, key: Key) -> str:
    return decrypt_bytes(encrypted, key).decode("utf-8")
