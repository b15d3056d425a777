import logging
import os
import secrets
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel

from simple_request.core.crypto import KEY_LEN, normalize_master_key

logger = logging.getLogger(__name__)

ENV_PREFIX = "SIMPLE_REQUEST_"


class Settings(BaseModel):
    workspace_dir: Path = Path("./workspace")
    secret_backend: Literal["file", "keyring", "memory"] = "file"
    master_key: Optional[str] = None  # hex, file backend only
    cache_ttl_seconds: float = 300.0
    eviction_interval_seconds: float = 60.0
    log_level: str = "INFO"

    @property
    def data_dir(self) -> Path:
        return self.workspace_dir / ".simple-request"

    @classmethod
    def from_env(cls, workspace_dir: Optional[str] = None) -> "Settings":
        """
        Read overrides from SIMPLE_REQUEST_* variables. An explicit workspace_dir
        (e.g. from the launcher's --dir flag) wins over the environment.
        """
        values = {}
        workspace = workspace_dir or os.getenv(ENV_PREFIX + "WORKSPACE")
        if workspace:
            values["workspace_dir"] = Path(workspace)
        mapping = {
            "SECRET_BACKEND": "secret_backend",
            "MASTER_KEY": "master_key",
            "CACHE_TTL": "cache_ttl_seconds",
            "EVICTION_INTERVAL": "eviction_interval_seconds",
            "LOG_LEVEL": "log_level",
        }
        for env_name, field in mapping.items():
            raw = os.getenv(ENV_PREFIX + env_name)
            if raw:
                values[field] = raw
        return cls(**values)


def load_master_key(settings: Settings) -> bytes:
    """
    Master key for local at-rest encryption: SIMPLE_REQUEST_MASTER_KEY when set,
    otherwise a key file created on first use with owner-only permissions.
    """
    if settings.master_key:
        return normalize_master_key(settings.master_key)
    key_path = settings.data_dir / "master.key"
    if key_path.exists():
        return normalize_master_key(key_path.read_text().strip())
    master = secrets.token_bytes(KEY_LEN)
    key_path.parent.mkdir(parents=True, exist_ok=True)
    key_path.write_text(master.hex())
    os.chmod(key_path, 0o600)
    logger.info("created master key at %s", key_path)
    return master
