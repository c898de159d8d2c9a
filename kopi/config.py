"""
config.py – Runtime settings read from the environment (.env supported).
"""
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    database_url:    str   = "sqlite:///./data/kopi.db"
    cache_dir:       Path  = Path("./data/cache")
    remote_timeout:  float = 10.0
    webhook_url:     str   = ""
    webhook_enabled: bool  = False
    webhook_timeout: float = 5.0
    log_level:       str   = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("KOPI_DATABASE_URL", cls.database_url),
            cache_dir=Path(os.getenv("KOPI_CACHE_DIR", str(cls.cache_dir))),
            remote_timeout=float(os.getenv("KOPI_REMOTE_TIMEOUT", cls.remote_timeout)),
            webhook_url=os.getenv("KOPI_WEBHOOK_URL", ""),
            webhook_enabled=_flag("KOPI_WEBHOOK_ENABLED"),
            webhook_timeout=float(os.getenv("KOPI_WEBHOOK_TIMEOUT", cls.webhook_timeout)),
            log_level=os.getenv("KOPI_LOG_LEVEL", cls.log_level).upper(),
        )
