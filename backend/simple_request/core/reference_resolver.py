import asyncio
import logging
from enum import Enum
from typing import Callable, List, Optional, Tuple

from simple_request.models import Request, UnresolvedSecret, new_id, now_iso
from simple_request.core.errors import ReferenceResolutionFailure, SecretCoreError, StoreError
from simple_request.core.secret_cache import SecretCache
from simple_request.core.secret_store import SecretStore
from simple_request.core.secret_transformers import SecretSlot, secret_slots

logger = logging.getLogger(__name__)


class RedactionPolicy(str, Enum):
    KEEP_VALUES = "keep-values"  # only for exports that are encrypted as a whole
    REFERENCE_VALUES = "reference-values"
    DROP_VALUES = "drop-values"


class ReferenceResolver:
    """
    Swaps credential values in a request for opaque secret-store references
    (export) and back (import). Never mutates the request it is given.
    """

    def __init__(self, store: SecretStore, cache: SecretCache, id_factory: Callable[[], str] = new_id):
        self.store = store
        self.cache = cache
        self._id_factory = id_factory

    # --- Store access ---
    async def _call_store(self, action: str, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except SecretCoreError:
            raise
        except Exception as exc:
            raise StoreError(f"{action} failed: {exc}") from exc

    async def _touch(self, secret_id: str):
        try:
            await asyncio.to_thread(self.store.touch_last_used, secret_id, now_iso())
        except Exception as exc:
            logger.warning("failed to update last use of secret %s: %s", secret_id, exc)

    async def store_value(self, name: str, value: str, kind: str, secret_id: Optional[str] = None) -> str:
        secret_id = secret_id or self._id_factory()
        await self._call_store("store", self.store.store, secret_id, name, value, kind)
        return secret_id

    async def delete_value(self, secret_id: str):
        await self._call_store("delete", self.store.delete, secret_id)

    async def resolve(self, secret_id: str) -> Optional[str]:
        """Cache first, then the store; a store hit refills the cache."""
        value = self.cache.get(secret_id)
        if value is None:
            value = await self._call_store("get", self.store.get, secret_id)
            if value is None:
                return None
            self.cache.put(secret_id, value)
        await self._touch(secret_id)
        return value

    # --- Export ---
    async def redact_for_export(self, request: Request, policy: RedactionPolicy) -> Request:
        r = request.model_copy(deep=True)
        if policy is RedactionPolicy.KEEP_VALUES:
            return r
        if policy is RedactionPolicy.DROP_VALUES:
            # Existing refs are cleared as well.
            for slot in secret_slots(r):
                slot.drop()
            return r
        slots = [slot for slot in secret_slots(r) if slot.value]
        await asyncio.gather(*(self._reference_slot(r, slot) for slot in slots))
        return r

    async def _reference_slot(self, request: Request, slot: SecretSlot):
        # The id lands in the request only after the store accepted the value.
        secret_id = await self.store_value(f"{request.name} {slot.name}", slot.value, slot.kind)
        slot.set_ref(secret_id)
        logger.debug("referenced %s of request %s as %s", slot.name, request.id, secret_id)

    # --- Import ---
    async def rehydrate_for_import(self, request: Request) -> Tuple[Request, List[UnresolvedSecret]]:
        r = request.model_copy(deep=True)
        slots = [slot for slot in secret_slots(r) if slot.ref]
        results = await asyncio.gather(*(self._rehydrate_slot(r, slot) for slot in slots))
        return r, [u for u in results if u is not None]

    async def _rehydrate_slot(self, request: Request, slot: SecretSlot) -> Optional[UnresolvedSecret]:
        ref = slot.ref
        try:
            value = await self.resolve(ref)
            if value is None:
                raise ReferenceResolutionFailure(ref, slot.name)
        except (ReferenceResolutionFailure, StoreError) as exc:
            logger.warning("dropping %s of request %s: %s", slot.name, request.id, exc)
            slot.drop()
            return UnresolvedSecret(request_id=request.id, slot=slot.name, reference_id=ref)
        slot.set_value(value)
        return None
