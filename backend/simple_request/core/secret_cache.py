import logging
import secrets
import threading
import time
from typing import Callable, Dict, Optional

from simple_request.models import SecretValue

logger = logging.getLogger(__name__)

DEFAULT_TTL = 5 * 60
EVICTION_INTERVAL = 60


class SecretCache:
    """
    Short-lived, process-local plaintext cache in front of the secret store.

    Entries carry an absolute deadline measured on `clock`. Every access goes
    through one lock because the eviction thread and request handlers share
    the map.
    """

    def __init__(
        self,
        ttl: float = DEFAULT_TTL,
        eviction_interval: float = EVICTION_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self.eviction_interval = eviction_interval
        self._clock = clock
        self._entries: Dict[str, SecretValue] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def put(self, secret_id: str, value: str, ttl: Optional[float] = None):
        expires_at = self._clock() + (self.ttl if ttl is None else ttl)
        with self._lock:
            previous = self._entries.pop(secret_id, None)
            if previous is not None:
                self._scrub(previous)
            self._entries[secret_id] = SecretValue(id=secret_id, value=value, expires_at=expires_at)

    def get(self, secret_id: str) -> Optional[str]:
        self.evict_expired()
        with self._lock:
            entry = self._entries.get(secret_id)
            if entry is None or entry.expires_at <= self._clock():
                return None
            return entry.value

    def invalidate(self, secret_id: str):
        with self._lock:
            entry = self._entries.pop(secret_id, None)
        if entry is not None:
            self._scrub(entry)

    def clear(self):
        with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()
        for entry in entries:
            self._scrub(entry)

    def evict_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [sid for sid, entry in self._entries.items() if entry.expires_at <= now]
            dropped = [self._entries.pop(sid) for sid in expired]
        for entry in dropped:
            self._scrub(entry)
        return len(dropped)

    def _scrub(self, entry: SecretValue):
        # Rebinding only; the old str may live on until collected.
        entry.value = secrets.token_hex(max(len(entry.value), 8))

    # --- Lifecycle of the periodic eviction task ---
    def start(self):
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._evict_loop, name="secret-cache-evictor", daemon=True)
        self._thread.start()

    def stop(self):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _evict_loop(self):
        while not self._stop.wait(self.eviction_interval):
            try:
                evicted = self.evict_expired()
            except Exception:
                logger.exception("secret cache eviction failed")
                continue
            if evicted:
                logger.debug("evicted %d expired secret(s) from cache", evicted)
