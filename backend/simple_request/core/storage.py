import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, List, Optional

from simple_request.models import Collection
from simple_request.core.errors import PersistError
from simple_request.core.secret_transformers import (
    transform_request_for_decryption,
    transform_request_for_encryption,
)

logger = logging.getLogger(__name__)


def atomic_write(target_path: Path, data: Any):
    target_path.parent.mkdir(parents=True, exist_ok=True)
    tmp = target_path.with_suffix(".tmp")
    if hasattr(data, "to_wire"):
        payload = json.dumps(data.to_wire(), indent=2)
    elif hasattr(data, "model_dump"):
        payload = json.dumps(data.model_dump(mode="json", by_alias=True), indent=2)
    else:
        payload = json.dumps(data, indent=2)
    with open(tmp, "w", encoding="utf-8") as f:
        f.write(payload)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp, target_path)


class WorkspaceStorage:
    """
    Local collection persistence: one JSON document per collection under
    <workspace>/collections/<id>.json. Each save is atomic for its own file.
    With a master key, credential slots are written as ciphertext.
    """

    def __init__(self, workspace_dir: Path, master_key: Optional[bytes] = None):
        self.base_dir = Path(workspace_dir)
        self.collections_dir = self.base_dir / "collections"
        self.collections_dir.mkdir(parents=True, exist_ok=True)
        self.master_key = master_key
        self._lock = threading.Lock()

    def _collection_path(self, collection_id: str) -> Path:
        return self.collections_dir / f"{collection_id}.json"

    def _read(self, path: Path) -> Collection:
        with open(path, "r", encoding="utf-8") as f:
            col = Collection.model_validate(json.load(f))
        if self.master_key:
            col.requests = [transform_request_for_decryption(r, self.master_key) for r in col.requests]
        return col

    def list_collections(self) -> List[Collection]:
        collections: List[Collection] = []
        for p in self.collections_dir.glob("*.json"):
            try:
                collections.append(self._read(p))
            except (OSError, ValueError) as exc:
                logger.warning("skipping unreadable collection file %s: %s", p.name, exc)
        collections.sort(key=lambda c: c.created_at or "")
        return collections

    def load_collection(self, collection_id: str) -> Collection:
        return self._read(self._collection_path(collection_id))

    def save_collection(self, collection: Collection):
        col_copy = collection.model_copy(deep=True)
        if self.master_key:
            col_copy.requests = [transform_request_for_encryption(r, self.master_key) for r in col_copy.requests]
        try:
            with self._lock:
                atomic_write(self._collection_path(col_copy.id), col_copy)
        except OSError as exc:
            raise PersistError(f"could not save collection {collection.id}: {exc}") from exc

    def delete_collection(self, collection_id: str):
        path = self._collection_path(collection_id)
        if path.exists():
            path.unlink()
