import asyncio
import json
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import pydantic

from simple_request.models import (
    EXPORT_VERSION,
    Collection,
    EncryptedEnvelope,
    ExportEnvelope,
    ExportOptions,
    ImportReport,
    UnresolvedSecret,
)
from simple_request.core.encryption import EncryptionService
from simple_request.core.errors import (
    CorruptImportError,
    DecryptionError,
    EmptyImportError,
    EncryptError,
    MalformedImportError,
    PasswordRequiredError,
    SecretCoreError,
    ValidationError,
)
from simple_request.core.import_merger import ImportMerger
from simple_request.core.reference_resolver import RedactionPolicy, ReferenceResolver

logger = logging.getLogger(__name__)


def _is_blank(password: Optional[str]) -> bool:
    return password is None or not password.strip()


def redaction_policy(options: ExportOptions) -> RedactionPolicy:
    if options.include_secrets and options.secret_references:
        raise ValidationError("includeSecrets and secretReferences cannot be combined")
    if options.include_secrets:
        return RedactionPolicy.KEEP_VALUES
    if options.secret_references:
        return RedactionPolicy.REFERENCE_VALUES
    return RedactionPolicy.DROP_VALUES


# --- Import shape classification ---

class ImportShape(str, Enum):
    ENVELOPE = "envelope"  # {"collections": [...]}
    BARE_LIST = "bare-list"  # [collection, ...]
    SINGLE_COLLECTION = "single-collection"  # {"name": ..., "requests"?: [...]}
    UNKNOWN = "unknown"


def classify_payload(payload: Any) -> ImportShape:
    if isinstance(payload, list):
        return ImportShape.BARE_LIST
    if isinstance(payload, dict):
        if isinstance(payload.get("collections"), list):
            return ImportShape.ENVELOPE
        if "collections" in payload or payload.get("encrypted"):
            return ImportShape.UNKNOWN
        # A collection without requests is still one collection.
        if isinstance(payload.get("name"), str):
            return ImportShape.SINGLE_COLLECTION
    return ImportShape.UNKNOWN


def _from_envelope(payload: Dict[str, Any]) -> List[Any]:
    version = payload.get("version")
    if version is not None and version != EXPORT_VERSION:
        logger.warning("importing envelope with unexpected version %r", version)
    return payload["collections"]


def _from_list(payload: List[Any]) -> List[Any]:
    return payload


def _from_single(payload: Dict[str, Any]) -> List[Any]:
    return [payload]


def _from_unknown(payload: Any) -> List[Any]:
    return []


_NORMALIZERS: Dict[ImportShape, Callable[[Any], List[Any]]] = {
    ImportShape.ENVELOPE: _from_envelope,
    ImportShape.BARE_LIST: _from_list,
    ImportShape.SINGLE_COLLECTION: _from_single,
    ImportShape.UNKNOWN: _from_unknown,
}


def normalize_collections(payload: Any) -> List[Collection]:
    raw = _NORMALIZERS[classify_payload(payload)](payload)
    if not raw:
        raise EmptyImportError("no collections found in import")
    try:
        return [Collection.model_validate(item) for item in raw]
    except pydantic.ValidationError as exc:
        raise MalformedImportError(f"invalid collection in import: {exc.error_count()} error(s)") from exc


def parse_blob(blob: Union[str, bytes]) -> Any:
    try:
        if isinstance(blob, bytes):
            blob = blob.decode("utf-8")
        return json.loads(blob)
    except (UnicodeDecodeError, ValueError) as exc:
        raise MalformedImportError("import file is not valid JSON") from exc


def is_encrypted_payload(payload: Any) -> bool:
    return isinstance(payload, dict) and payload.get("encrypted") is True


class ExportCodec:
    """Wire encoding of collection exchange files, plain or password encrypted."""

    def __init__(self, resolver: ReferenceResolver, encryption: EncryptionService, merger: ImportMerger):
        self.resolver = resolver
        self.encryption = encryption
        self.merger = merger

    # --- Export ---
    async def _redact_collection(self, collection: Collection, policy: RedactionPolicy) -> Collection:
        requests = await asyncio.gather(
            *(self.resolver.redact_for_export(req, policy) for req in collection.requests)
        )
        return collection.model_copy(update={"requests": list(requests)})

    async def export_collections(
        self,
        collections: List[Collection],
        options: ExportOptions,
        password: Optional[str] = None,
    ) -> str:
        policy = redaction_policy(options)
        if options.include_secrets and _is_blank(password):
            raise PasswordRequiredError("a password is required to export secrets")

        processed = await asyncio.gather(*(self._redact_collection(c, policy) for c in collections))
        envelope = ExportEnvelope(
            security_level="encrypted" if options.include_secrets else "references-only",
            collections=list(processed),
        )
        payload = json.dumps(envelope.to_wire(), indent=4)
        if not options.include_secrets:
            return payload

        try:
            ciphertext = await asyncio.to_thread(self.encryption.encrypt, payload.encode("utf-8"), password)
        except SecretCoreError:
            raise
        except Exception as exc:
            raise EncryptError(str(exc)) from exc
        logger.info("exported %d collection(s) encrypted", len(processed))
        return json.dumps(EncryptedEnvelope(data=ciphertext).to_wire(), indent=4)

    # --- Import ---
    async def decrypt_payload(self, payload: Dict[str, Any], password: Optional[str]) -> Any:
        if _is_blank(password):
            raise PasswordRequiredError("encrypted import requires a password")
        ciphertext = payload.get("data")
        if not isinstance(ciphertext, str) or not ciphertext:
            raise CorruptImportError("encrypted import has no data")
        try:
            plaintext = await asyncio.to_thread(self.encryption.decrypt, ciphertext, password)
        except SecretCoreError:
            raise
        except Exception as exc:
            raise DecryptionError(str(exc)) from exc
        try:
            return json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise CorruptImportError("decrypted payload is not valid JSON") from exc

    async def rehydrate(
        self, collections: List[Collection]
    ) -> Tuple[List[Collection], List[Tuple[int, int, UnresolvedSecret]]]:
        """
        Rehydrated copies plus every unresolved slot, tagged with the
        (collection index, request index) it came from.
        """

        async def one(collection: Collection):
            return await asyncio.gather(
                *(self.resolver.rehydrate_for_import(req) for req in collection.requests)
            )

        per_collection = await asyncio.gather(*(one(c) for c in collections))
        rehydrated: List[Collection] = []
        unresolved: List[Tuple[int, int, UnresolvedSecret]] = []
        for ci, (collection, results) in enumerate(zip(collections, per_collection)):
            rehydrated.append(collection.model_copy(update={"requests": [req for req, _ in results]}))
            for ri, (_, missing) in enumerate(results):
                unresolved.extend((ci, ri, u) for u in missing)
        return rehydrated, unresolved

    async def import_payload(self, payload: Any) -> ImportReport:
        collections = normalize_collections(payload)
        collections, tagged = await self.rehydrate(collections)
        persisted = await self.merger.merge(collections)
        if tagged:
            logger.warning("%d secret reference(s) could not be resolved on this machine", len(tagged))
        # Report against the identifiers the requests were saved under. Source
        # ids can repeat across collections, so match by position.
        unresolved = [
            u.model_copy(update={"request_id": persisted[ci].requests[ri].id}) for ci, ri, u in tagged
        ]
        return ImportReport(collections=persisted, unresolved=unresolved)

    async def import_collections(self, blob: Union[str, bytes], password: Optional[str] = None) -> ImportReport:
        payload = parse_blob(blob)
        if is_encrypted_payload(payload):
            payload = await self.decrypt_payload(payload, password)
        return await self.import_payload(payload)
