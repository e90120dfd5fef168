"""Environment-driven settings."""
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict


load_dotenv()


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value < 1:
        raise ValueError(f"{name} must be >= 1, got {value}")
    return value


class Settings(BaseModel):
    """Runtime configuration for the reconciliation pipeline."""
    model_config = ConfigDict(frozen=True)

    store_dir: Path
    report_dir: Path
    max_concurrency: int
    timezone: str
    default_capacity: int
    log_level: str

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            store_dir=Path(os.getenv("FARE_STORE_DIR", "data/store")),
            report_dir=Path(os.getenv("FARE_REPORT_DIR", "data/reports")),
            max_concurrency=_int_env("FARE_MAX_CONCURRENCY", 10),
            timezone=os.getenv("FARE_TIMEZONE", "Asia/Manila"),
            default_capacity=_int_env("FARE_DEFAULT_CAPACITY", 27),
            log_level=os.getenv("FARE_LOG_LEVEL", "INFO").upper(),
        )


DEFAULT_CAPACITY = 27
