import os

import pytest

from simple_request.core.crypto import (
    CorruptPayloadError,
    CryptoError,
    KEY_LEN,
    decrypt_bytes,
    decrypt_value,
    encrypt_bytes,
    encrypt_value,
)
from simple_request.core.encryption import PasswordCipher
from simple_request.core.errors import CorruptImportError, DecryptionError


def test_master_round_trip():
    master = os.urandom(KEY_LEN)
    cipher = encrypt_value("secret", master)
    assert cipher.startswith("enc:v1|master|")
    assert decrypt_value(cipher, master) == "secret"


def test_password_round_trip_bytes():
    cipher = encrypt_bytes(b'{"collections": []}', "hunter2")
    assert decrypt_bytes(cipher, "hunter2") == b'{"collections": []}'


def test_wrong_password_is_not_reported_as_corrupt():
    cipher = encrypt_value("secret", "hunter2")
    with pytest.raises(CryptoError) as info:
        decrypt_value(cipher, "hunter3")
    assert not isinstance(info.value, CorruptPayloadError)


def test_garbage_is_corrupt():
    with pytest.raises(CorruptPayloadError):
        decrypt_value("garbage", "hunter2")
    with pytest.raises(CorruptPayloadError):
        decrypt_value("enc:v1|master|0||!!|!!", os.urandom(KEY_LEN))


def test_master_key_length_enforced():
    with pytest.raises(CryptoError):
        encrypt_value("secret", b"short")


def test_password_cipher_maps_errors_to_boundary_errors():
    svc = PasswordCipher()
    ciphertext = svc.encrypt(b"payload", "correct horse")
    assert svc.decrypt(ciphertext, "correct horse") == b"payload"
    with pytest.raises(DecryptionError):
        svc.decrypt(ciphertext, "battery staple")
    with pytest.raises(CorruptImportError):
        svc.decrypt("not-a-ciphertext", "correct horse")
