"""Import interaction state machine.

Tracks one file import from selection to completion so the UI can tell
"enter a password" from "retry the password" from "file is corrupt"::

    Idle -> FileSelected -> PlaintextDetected -> Importing -> Done | Failed
    FileSelected -> EncryptedDetected -> AwaitingPassword -> Decrypting
    Decrypting -> Importing | DecryptFailed -> AwaitingPassword (repeatable)
    AwaitingPassword -> Cancelled

A file that is not JSON goes FileSelected -> Failed, and an encrypted payload
that no password can open goes Decrypting -> Failed.
"""

import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from simple_request.models import ImportReport
from simple_request.core.errors import (
    DecryptionError,
    InvalidTransitionError,
    PasswordRequiredError,
    SecretCoreError,
)
from simple_request.core.export_codec import ExportCodec, is_encrypted_payload, parse_blob

logger = logging.getLogger(__name__)


class ImportState(str, Enum):
    IDLE = "idle"
    FILE_SELECTED = "file-selected"
    PLAINTEXT_DETECTED = "plaintext-detected"
    ENCRYPTED_DETECTED = "encrypted-detected"
    AWAITING_PASSWORD = "awaiting-password"
    DECRYPTING = "decrypting"
    DECRYPT_FAILED = "decrypt-failed"
    IMPORTING = "importing"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({ImportState.DONE, ImportState.FAILED, ImportState.CANCELLED})


class ImportSession:
    VALID_TRANSITIONS: Dict[ImportState, List[ImportState]] = {
        ImportState.IDLE: [ImportState.FILE_SELECTED],
        ImportState.FILE_SELECTED: [ImportState.PLAINTEXT_DETECTED, ImportState.ENCRYPTED_DETECTED, ImportState.FAILED],
        ImportState.PLAINTEXT_DETECTED: [ImportState.IMPORTING],
        ImportState.ENCRYPTED_DETECTED: [ImportState.AWAITING_PASSWORD],
        ImportState.AWAITING_PASSWORD: [ImportState.DECRYPTING, ImportState.CANCELLED],
        ImportState.DECRYPTING: [ImportState.IMPORTING, ImportState.DECRYPT_FAILED, ImportState.FAILED],
        ImportState.DECRYPT_FAILED: [ImportState.AWAITING_PASSWORD],
        ImportState.IMPORTING: [ImportState.DONE, ImportState.FAILED],
    }

    def __init__(self, codec: ExportCodec):
        self.codec = codec
        self.state = ImportState.IDLE
        self.history: List[ImportState] = [ImportState.IDLE]
        self.report: Optional[ImportReport] = None
        self.error: Optional[SecretCoreError] = None
        self.failed_attempts = 0
        self._payload: Any = None

    def _transition(self, to_state: ImportState):
        if to_state not in self.VALID_TRANSITIONS.get(self.state, []):
            raise InvalidTransitionError(f"cannot go from {self.state.value} to {to_state.value}")
        logger.debug("import session %s -> %s", self.state.value, to_state.value)
        self.state = to_state
        self.history.append(to_state)

    def _fail(self, error: SecretCoreError) -> ImportState:
        self.error = error
        self._payload = None
        self._transition(ImportState.FAILED)
        return self.state

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    def select_file(self, blob: Union[str, bytes]) -> ImportState:
        self._transition(ImportState.FILE_SELECTED)
        try:
            payload = parse_blob(blob)
        except SecretCoreError as exc:
            return self._fail(exc)
        self._payload = payload
        if is_encrypted_payload(payload):
            self._transition(ImportState.ENCRYPTED_DETECTED)
            self._transition(ImportState.AWAITING_PASSWORD)
        else:
            self._transition(ImportState.PLAINTEXT_DETECTED)
        return self.state

    async def run(self) -> ImportState:
        """Import a plaintext file."""
        if self.state is not ImportState.PLAINTEXT_DETECTED:
            raise InvalidTransitionError(f"nothing to import in state {self.state.value}")
        return await self._import(self._payload)

    async def submit_password(self, password: Optional[str]) -> ImportState:
        if self.state is not ImportState.AWAITING_PASSWORD:
            raise InvalidTransitionError(f"no password expected in state {self.state.value}")
        if password is None or not password.strip():
            # Stay in AwaitingPassword; the UI asks again.
            raise PasswordRequiredError("encrypted import requires a password")
        self._transition(ImportState.DECRYPTING)
        try:
            decrypted = await self.codec.decrypt_payload(self._payload, password)
        except DecryptionError as exc:
            self.failed_attempts += 1
            self.error = exc
            self._transition(ImportState.DECRYPT_FAILED)
            self._transition(ImportState.AWAITING_PASSWORD)
            return self.state
        except SecretCoreError as exc:
            return self._fail(exc)
        self.error = None
        return await self._import(decrypted)

    def cancel(self) -> ImportState:
        self._transition(ImportState.CANCELLED)
        self._payload = None
        return self.state

    async def _import(self, payload: Any) -> ImportState:
        self._transition(ImportState.IMPORTING)
        try:
            self.report = await self.codec.import_payload(payload)
        except SecretCoreError as exc:
            return self._fail(exc)
        self._payload = None
        self._transition(ImportState.DONE)
        return self.state
