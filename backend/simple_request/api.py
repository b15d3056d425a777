from typing import Any, Dict, List, Optional, get_args
from fastapi import APIRouter, Body, Depends, HTTPException, Request as HttpRequest
from fastapi.responses import JSONResponse
from pydantic import Field

from simple_request.models import (
    Collection,
    ExportOptions,
    ImportReport,
    SecretKind,
    SecretReference,
    WireModel,
)
from simple_request.core.errors import (
    BoundaryError,
    CorruptImportError,
    DecryptionError,
    PartialImportError,
    PasswordRequiredError,
    SecretCoreError,
    ValidationError,
)
from simple_request.core.service import SecretService

router = APIRouter()


def get_service(request: HttpRequest) -> SecretService:
    return request.app.state.secret_service


class ExportPayload(WireModel):
    collections: List[Collection] = []
    options: ExportOptions = Field(default_factory=ExportOptions)
    password: Optional[str] = None


class ImportPayload(WireModel):
    data: str
    password: Optional[str] = None


def _raise_http(ex: SecretCoreError):
    """Distinct codes so the UI can tell missing, wrong and unusable passwords apart."""
    if isinstance(ex, PasswordRequiredError):
        raise HTTPException(status_code=400, detail="password required")
    if isinstance(ex, ValidationError):
        raise HTTPException(status_code=400, detail=str(ex))
    if isinstance(ex, DecryptionError):
        raise HTTPException(status_code=401, detail="incorrect password")
    if isinstance(ex, CorruptImportError):
        raise HTTPException(status_code=422, detail="import file is corrupt")
    if isinstance(ex, BoundaryError):
        raise HTTPException(status_code=502, detail=str(ex))
    raise HTTPException(status_code=500, detail=str(ex))


# --- Collection exchange ---
@router.post("/export")
async def export_collections(payload: ExportPayload, service: SecretService = Depends(get_service)):
    try:
        data = await service.export_collections(payload.collections, payload.options, payload.password)
    except SecretCoreError as ex:
        _raise_http(ex)
    return {"data": data}


@router.post("/import")
async def import_collections(payload: ImportPayload, service: SecretService = Depends(get_service)):
    try:
        report: ImportReport = await service.import_collections(payload.data, payload.password)
    except PartialImportError as ex:
        return JSONResponse(
            status_code=500,
            content={"detail": str(ex), "processed": ex.processed, "pending": ex.pending},
        )
    except SecretCoreError as ex:
        _raise_http(ex)
    return report.to_wire()


@router.get("/collections")
async def list_collections(service: SecretService = Depends(get_service)) -> List[Dict[str, Any]]:
    return [c.to_wire() for c in service.persistence.list_collections()]


# --- Secrets (references only, never values) ---
@router.get("/secrets")
async def list_secrets(service: SecretService = Depends(get_service)) -> List[Dict[str, Any]]:
    refs: List[SecretReference] = await service.list_references()
    return [r.to_wire() for r in refs]


@router.post("/secrets")
async def store_secret(payload: Dict[str, Any] = Body(...), service: SecretService = Depends(get_service)):
    name = payload.get("name")
    value = payload.get("value")
    if not name or not value:
        raise HTTPException(status_code=400, detail="name and value are required")
    kind = payload.get("type") or "custom"
    if kind not in get_args(SecretKind):
        raise HTTPException(status_code=400, detail=f"unknown secret type {kind}")
    try:
        ref = await service.store_secret(str(name), str(value), kind)
    except SecretCoreError as ex:
        _raise_http(ex)
    return ref.to_wire()


@router.delete("/secrets/{secret_id}")
async def delete_secret(secret_id: str, service: SecretService = Depends(get_service)):
    try:
        await service.delete_secret(secret_id)
    except SecretCoreError as ex:
        _raise_http(ex)
    return {"status": "ok"}
