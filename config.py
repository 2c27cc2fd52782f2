import os
from functools import lru_cache
from pathlib import Path

QUERY_STRATEGIES = ("pushdown", "scan")


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        query_strategy: str,
        trend_max_workers: int,
        currency: str,
        default_owner: str,
        log_level: str,
        frontend_origins: list[str],
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.query_strategy = query_strategy
        self.trend_max_workers = trend_max_workers
        self.currency = currency
        self.default_owner = default_owner
        self.log_level = log_level
        self.frontend_origins = frontend_origins


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _split_origins(raw: str) -> list[str]:
    origins = [origin.strip() for origin in raw.split(",")]
    return [origin for origin in origins if origin] or ["*"]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("LEDGER_TIMEZONE", "UTC")
    query_strategy = os.getenv("LEDGER_QUERY_STRATEGY", "pushdown").strip().lower()
    if query_strategy not in QUERY_STRATEGIES:
        raise ValueError(f"Unknown ledger query strategy: {query_strategy}")
    trend_max_workers = max(1, int(os.getenv("LEDGER_TREND_MAX_WORKERS", "4")))
    currency = os.getenv("LEDGER_CURRENCY", "FCFA")
    default_owner = os.getenv("LEDGER_DEFAULT_OWNER", "default")
    log_level = os.getenv("LEDGER_LOG_LEVEL", "INFO").upper()
    frontend_origins = _split_origins(os.getenv("LEDGER_FRONTEND_URL", "*"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        query_strategy=query_strategy,
        trend_max_workers=trend_max_workers,
        currency=currency,
        default_owner=default_owner,
        log_level=log_level,
        frontend_origins=frontend_origins,
    )
