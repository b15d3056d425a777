from typing import Optional


class SecretCoreError(Exception):
    """Base class for every error raised by the secret exchange core."""


# --- Validation (raised before any boundary call) ---

class ValidationError(SecretCoreError):
    pass


class PasswordRequiredError(ValidationError):
    """An encrypted export or import was attempted without a usable password."""


class EmptyImportError(ValidationError):
    pass


class MalformedImportError(ValidationError):
    pass


# --- Boundary failures (store / encrypt / decrypt / persist) ---

class BoundaryError(SecretCoreError):
    operation = "boundary"

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        if operation:
            self.operation = operation

    def __str__(self) -> str:
        return f"{self.operation}: {super().__str__()}"


class StoreError(BoundaryError):
    operation = "secret-store"


class EncryptError(BoundaryError):
    operation = "encrypt"


class DecryptionError(BoundaryError):
    """Decryption failed, most likely because the password is wrong."""

    operation = "decrypt"


class CorruptImportError(BoundaryError):
    """The encrypted payload cannot be opened with any password."""

    operation = "decrypt"


class PersistError(BoundaryError):
    operation = "persist"


class PartialImportError(SecretCoreError):
    """Persisting imported collections stopped part way through."""

    def __init__(self, processed: int, pending: int, cause: Optional[BaseException] = None):
        super().__init__(f"import aborted after {processed} collection(s); {pending} pending")
        self.processed = processed
        self.pending = pending
        self.cause = cause


class ReferenceResolutionFailure(SecretCoreError):
    """A secret reference is unknown on this machine. Never fatal to an import."""

    def __init__(self, reference_id: str, slot: str):
        super().__init__(f"could not resolve {slot} reference {reference_id}")
        self.reference_id = reference_id
        self.slot = slot


class InvalidTransitionError(SecretCoreError):
    pass
