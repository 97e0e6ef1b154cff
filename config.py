import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        database_url: str,
        token_secret: Optional[str],
        token_scheme: str,
        token_ttl_minutes: int,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.token_secret = token_secret
        self.token_scheme = token_scheme
        self.token_ttl_minutes = token_ttl_minutes
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("EXPENSES_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "expenses.db"
    database_url = os.getenv("EXPENSES_DATABASE_URL", f"sqlite:///{default_db}")
    # Unset secret is reported per request, not at startup.
    token_secret = os.getenv("EXPENSES_TOKEN_SECRET") or os.getenv("JWT_SECRET")
    token_scheme = os.getenv("EXPENSES_TOKEN_SCHEME", "Bearer")
    token_ttl_minutes = int(os.getenv("EXPENSES_TOKEN_TTL_MINUTES", "60"))
    log_level = os.getenv("EXPENSES_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        token_secret=token_secret or None,
        token_scheme=token_scheme,
        token_ttl_minutes=token_ttl_minutes,
        log_level=log_level,
    )
