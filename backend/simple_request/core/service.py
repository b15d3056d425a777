import asyncio
import logging
from typing import List, Optional, Union

from simple_request.models import Collection, ExportOptions, ImportReport, SecretReference
from simple_request.core.config import Settings, load_master_key
from simple_request.core.encryption import EncryptionService, PasswordCipher
from simple_request.core.export_codec import ExportCodec
from simple_request.core.import_merger import ImportMerger
from simple_request.core.import_session import ImportSession
from simple_request.core.reference_resolver import ReferenceResolver
from simple_request.core.secret_cache import SecretCache
from simple_request.core.secret_store import SecretStore, create_secret_store
from simple_request.core.storage import WorkspaceStorage

logger = logging.getLogger(__name__)


def mask_secret(secret: Optional[str]) -> str:
    """Display form of a secret: first and last four characters around bullets."""
    if not secret or len(secret) < 8:
        return "•" * 8
    middle = "•" * min(len(secret) - 8, 12)
    return f"{secret[:4]}{middle}{secret[-4:]}"


class SecretService:
    """
    One explicitly constructed instance per workspace. Holds the plaintext
    cache, whose eviction task runs from construction until close(), and the
    store / encryption / persistence collaborators.
    """

    def __init__(
        self,
        store: SecretStore,
        encryption: EncryptionService,
        persistence,
        settings: Optional[Settings] = None,
        cache: Optional[SecretCache] = None,
    ):
        self.settings = settings or Settings()
        self.store = store
        self.encryption = encryption
        self.persistence = persistence
        self.cache = cache or SecretCache(
            ttl=self.settings.cache_ttl_seconds,
            eviction_interval=self.settings.eviction_interval_seconds,
        )
        self.resolver = ReferenceResolver(store, self.cache)
        self.merger = ImportMerger(persistence)
        self.codec = ExportCodec(self.resolver, encryption, self.merger)
        self.cache.start()

    @classmethod
    def from_settings(cls, settings: Settings) -> "SecretService":
        master_key = load_master_key(settings) if settings.secret_backend == "file" else None
        return cls(
            store=create_secret_store(settings),
            encryption=PasswordCipher(),
            persistence=WorkspaceStorage(settings.workspace_dir, master_key=master_key),
            settings=settings,
        )

    def close(self):
        self.cache.stop()
        self.cache.clear()

    def __enter__(self) -> "SecretService":
        return self

    def __exit__(self, *exc_info):
        self.close()

    # --- Collection exchange ---
    async def export_collections(
        self,
        collections: List[Collection],
        options: ExportOptions,
        password: Optional[str] = None,
    ) -> str:
        return await self.codec.export_collections(collections, options, password)

    async def import_collections(self, blob: Union[str, bytes], password: Optional[str] = None) -> ImportReport:
        return await self.codec.import_collections(blob, password)

    def start_import(self, blob: Union[str, bytes]) -> ImportSession:
        session = ImportSession(self.codec)
        session.select_file(blob)
        return session

    # --- Individual secrets ---
    async def store_secret(self, name: str, value: str, kind: str = "custom", secret_id: Optional[str] = None) -> SecretReference:
        secret_id = await self.resolver.store_value(name, value, kind, secret_id)
        # A stored value is not kept in memory; the next read goes to the store.
        self.cache.invalidate(secret_id)
        logger.info("stored secret %s (%s)", secret_id, kind)
        refs = await self.list_references()
        found = next((r for r in refs if r.id == secret_id), None)
        return found or SecretReference(id=secret_id, name=name, kind=kind)

    async def get_secret(self, secret_id: str) -> Optional[str]:
        return await self.resolver.resolve(secret_id)

    async def list_references(self) -> List[SecretReference]:
        return await asyncio.to_thread(self.store.list_references)

    async def delete_secret(self, secret_id: str):
        await self.resolver.delete_value(secret_id)
        self.cache.invalidate(secret_id)
        logger.info("deleted secret %s", secret_id)

    def mask_secret(self, secret: Optional[str]) -> str:
        return mask_secret(secret)

    def clear_cache(self):
        self.cache.clear()
