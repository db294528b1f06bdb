import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        processor_interval_hours: int,
        splitwise_import_interval_hours: int,
        recurring_horizon_days: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.processor_interval_hours = processor_interval_hours
        self.splitwise_import_interval_hours = splitwise_import_interval_hours
        self.recurring_horizon_days = recurring_horizon_days


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINANCE_TIMEZONE", "Europe/Amsterdam")
    processor_interval_hours = int(os.getenv("FINANCE_PROCESSOR_INTERVAL_HOURS", "6"))
    splitwise_import_interval_hours = int(
        os.getenv("FINANCE_SPLITWISE_IMPORT_INTERVAL_HOURS", "1")
    )
    recurring_horizon_days = int(os.getenv("FINANCE_RECURRING_HORIZON_DAYS", "7"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        processor_interval_hours=processor_interval_hours,
        splitwise_import_interval_hours=splitwise_import_interval_hours,
        recurring_horizon_days=recurring_horizon_days,
    )
