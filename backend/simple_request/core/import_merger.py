import asyncio
import logging
from typing import Callable, List, Set

from simple_request.models import Collection, new_id, now_iso
from simple_request.core.errors import BoundaryError, PartialImportError, PersistError

logger = logging.getLogger(__name__)

IMPORTED_SUFFIX = " (imported)"


def unique_name(name: str, taken: Set[str]) -> str:
    """
    First free name among `name`, `name (imported)`, `name (imported 2)`, ...
    Comparison is case-insensitive; the result is added to `taken`.
    """
    candidate = name
    n = 1
    while candidate.casefold() in taken:
        candidate = f"{name}{IMPORTED_SUFFIX}" if n == 1 else f"{name} (imported {n})"
        n += 1
    taken.add(candidate.casefold())
    return candidate


class ImportMerger:
    """
    Places decoded collections into the local workspace: renames on name
    collision, regenerates every identifier, stamps timestamps, then persists
    collections one at a time.
    """

    def __init__(self, persistence, id_factory: Callable[[], str] = new_id, clock: Callable[[], str] = now_iso):
        self.persistence = persistence
        self._id_factory = id_factory
        self._clock = clock

    def _fresh_id(self, used: Set[str]) -> str:
        new = self._id_factory()
        while new in used:
            new = self._id_factory()
        used.add(new)
        return new

    def prepare(self, incoming: Collection, taken_names: Set[str], used_ids: Set[str], now: str) -> Collection:
        col = incoming.model_copy(deep=True)
        col.name = unique_name(col.name, taken_names)
        col.id = self._fresh_id(used_ids)
        col.created_at = col.created_at or now
        col.updated_at = now
        for req in col.requests:
            req.id = self._fresh_id(used_ids)
            req.collection_id = col.id
            req.created_at = req.created_at or now
            req.updated_at = now
        return col

    async def merge(self, collections: List[Collection]) -> List[Collection]:
        try:
            existing = await asyncio.to_thread(self.persistence.list_collections)
        except Exception as exc:
            raise PersistError(f"could not list local collections: {exc}", operation="list-collections") from exc

        taken_names = {c.name.casefold() for c in existing}
        used_ids = {c.id for c in existing} | {r.id for c in existing for r in c.requests}
        # Incoming ids are never reused either.
        used_ids |= {c.id for c in collections} | {r.id for c in collections for r in c.requests}
        now = self._clock()
        prepared = [self.prepare(c, taken_names, used_ids, now) for c in collections]

        persisted: List[Collection] = []
        for index, col in enumerate(prepared):
            try:
                await asyncio.to_thread(self.persistence.save_collection, col)
            except Exception as exc:
                cause = exc if isinstance(exc, BoundaryError) else PersistError(str(exc))
                pending = len(prepared) - index
                logger.error("import stopped at collection %r: %s (%d saved, %d pending)", col.name, exc, index, pending)
                raise PartialImportError(processed=index, pending=pending, cause=cause) from exc
            persisted.append(col)
            logger.info("imported collection %r as %s", col.name, col.id)
        return persisted
