"""
Runtime configuration read from environment variables
"""
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict


def _env_float(name: str, default: float) -> float:
    return float(os.environ.get(name, default))


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, default))


@dataclass
class Settings:
    host: str = "0.0.0.0"
    port: int = 3000

    room_code_length: int = 6
    room_inactivity_timeout: float = 5 * 60
    room_cleanup_interval: float = 60

    sync_throttle: float = 0.2
    sync_tolerance: float = 1.0
    media_duplicate_window: float = 2.0
    validate_timeout: float = 5.0

    data_dir: Path = Path("./data")

    # username -> bcrypt hash; empty means anyone may create rooms
    admin_users: Dict[str, str] = field(default_factory=dict)
    secret_key: str = "change-me"
    token_ttl: int = 60 * 60

    @property
    def creation_requires_login(self) -> bool:
        return bool(self.admin_users)

    @classmethod
    def from_env(cls) -> "Settings":
        admin_users = json.loads(os.environ.get("TOSYNC_ADMIN_USERS") or "{}")
        return cls(
            host=os.environ.get("SERVER_HOST", os.environ.get("HOST", "0.0.0.0")),
            port=_env_int("PORT", 3000),
            room_code_length=_env_int("TOSYNC_ROOM_CODE_LENGTH", 6),
            room_inactivity_timeout=_env_float("TOSYNC_ROOM_INACTIVITY_TIMEOUT", 5 * 60),
            room_cleanup_interval=_env_float("TOSYNC_ROOM_CLEANUP_INTERVAL", 60),
            sync_throttle=_env_float("TOSYNC_SYNC_THROTTLE", 0.2),
            sync_tolerance=_env_float("TOSYNC_SYNC_TOLERANCE", 1.0),
            media_duplicate_window=_env_float("TOSYNC_MEDIA_DUPLICATE_WINDOW", 2.0),
            validate_timeout=_env_float("TOSYNC_VALIDATE_TIMEOUT", 5.0),
            data_dir=Path(os.environ.get("TOSYNC_DATA_DIR", "./data")),
            admin_users=admin_users,
            secret_key=os.environ.get("TOSYNC_SECRET_KEY", "change-me"),
            token_ttl=_env_int("TOSYNC_TOKEN_TTL", 60 * 60),
        )
