import asyncio
import json

import pytest

from conftest import BEARER, FakePersistence, make_collection
from simple_request.models import ExportOptions
from simple_request.core.errors import (
    CorruptImportError,
    DecryptionError,
    InvalidTransitionError,
    PartialImportError,
    PasswordRequiredError,
)
from simple_request.core.import_session import ImportSession, ImportState


def encrypted_blob(service, password="pw"):
    return asyncio.run(
        service.export_collections([make_collection()], ExportOptions(include_secrets=True), password)
    )


def test_plaintext_flow(service):
    blob = json.dumps([make_collection("Plain").to_wire()])
    session = service.start_import(blob)
    assert session.state is ImportState.PLAINTEXT_DETECTED

    assert asyncio.run(session.run()) is ImportState.DONE
    assert session.report.collections[0].name == "Plain"
    assert session.history == [
        ImportState.IDLE,
        ImportState.FILE_SELECTED,
        ImportState.PLAINTEXT_DETECTED,
        ImportState.IMPORTING,
        ImportState.DONE,
    ]
    assert session.finished


def test_wrong_password_returns_to_awaiting_password(service):
    session = service.start_import(encrypted_blob(service))
    assert session.state is ImportState.AWAITING_PASSWORD

    assert asyncio.run(session.submit_password("nope")) is ImportState.AWAITING_PASSWORD
    assert asyncio.run(session.submit_password("still nope")) is ImportState.AWAITING_PASSWORD
    assert session.failed_attempts == 2
    assert isinstance(session.error, DecryptionError)
    assert session.history.count(ImportState.DECRYPT_FAILED) == 2

    assert asyncio.run(session.submit_password("pw")) is ImportState.DONE
    assert session.error is None
    assert session.report.collections[0].requests[0].auth.bearer_token == BEARER


def test_blank_password_keeps_waiting(service):
    session = service.start_import(encrypted_blob(service))
    with pytest.raises(PasswordRequiredError):
        asyncio.run(session.submit_password("  "))
    assert session.state is ImportState.AWAITING_PASSWORD
    assert session.failed_attempts == 0


def test_cancel_is_terminal(service):
    session = service.start_import(encrypted_blob(service))
    assert session.cancel() is ImportState.CANCELLED
    assert session.finished
    with pytest.raises(InvalidTransitionError):
        asyncio.run(session.submit_password("pw"))


def test_cancel_only_from_awaiting_password(service):
    session = service.start_import(json.dumps([make_collection().to_wire()]))
    with pytest.raises(InvalidTransitionError):
        session.cancel()


def test_corrupt_encrypted_file_fails(service):
    session = service.start_import(json.dumps({"encrypted": True, "version": "1.0", "data": "junk"}))
    assert asyncio.run(session.submit_password("pw")) is ImportState.FAILED
    assert isinstance(session.error, CorruptImportError)


def test_unparseable_file_fails_immediately(service):
    session = service.start_import("{{{")
    assert session.state is ImportState.FAILED
    with pytest.raises(InvalidTransitionError):
        asyncio.run(session.run())


def test_import_failure_is_recorded(store, cipher):
    from simple_request.core.service import SecretService

    with SecretService(store, cipher, FakePersistence(fail_on=1)) as svc:
        session = svc.start_import(json.dumps([make_collection().to_wire()]))
        assert asyncio.run(session.run()) is ImportState.FAILED
    assert isinstance(session.error, PartialImportError)


def test_select_file_only_once(service):
    session = ImportSession(service.codec)
    session.select_file("[]")
    with pytest.raises(InvalidTransitionError):
        session.select_file("[]")
