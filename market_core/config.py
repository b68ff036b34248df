from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import List, Mapping

DEFAULT_DATA_DIR = Path(__file__).resolve().parents[1] / "data"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _split_csv(value: str) -> List[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


@dataclass(frozen=True)
class Settings:
    data_dir: Path = DEFAULT_DATA_DIR
    log_level: str = "INFO"
    # Artificial loading delay shown by the UI; the store is not queried before it elapses.
    load_delay_ms: int = 0
    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000"])


def settings_from_env(env: Mapping[str, str] = os.environ) -> Settings:
    defaults = Settings()
    delay = env.get("MARKET_LOAD_DELAY_MS", "")
    try:
        load_delay_ms = max(0, int(delay)) if delay else defaults.load_delay_ms
    except ValueError:
        load_delay_ms = defaults.load_delay_ms
    origins = env.get("MARKET_CORS_ORIGINS")
    return Settings(
        data_dir=Path(env.get("MARKET_DATA_DIR") or defaults.data_dir),
        log_level=(env.get("MARKET_LOG_LEVEL") or defaults.log_level).upper(),
        load_delay_ms=load_delay_ms,
        cors_origins=_split_csv(origins) if origins else defaults.cors_origins,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return settings_from_env()


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format=LOG_FORMAT)
    else:
        root.setLevel(level)
