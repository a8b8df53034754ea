import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        generation_strict: bool,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.generation_strict = generation_strict
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("OBLIGATIONS_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "obligations.db"
    database_url = os.getenv("OBLIGATIONS_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("OBLIGATIONS_TIMEZONE", "America/Argentina/Buenos_Aires")
    generation_strict = _env_flag("OBLIGATIONS_GENERATION_STRICT")
    log_level = os.getenv("OBLIGATIONS_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        generation_strict=generation_strict,
        log_level=log_level,
    )
