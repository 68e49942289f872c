"""Environment-driven runtime settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from teesheet.domain.constraints import OperatingConfig


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    log_level: str
    database_path: Path

    operating_start_time: str
    operating_end_time: str
    slot_interval_minutes: int
    max_occupants_per_slot: int
    window_duration_minutes: int
    max_group_members: int

    fairness_step: int
    fairness_min_score: int
    fairness_max_score: int
    fairness_default_score: int

    seed_demo_data: bool

    def operating_config(self) -> OperatingConfig:
        """Day configuration consumed by window and slot computation."""
        return OperatingConfig(
            start_time=self.operating_start_time,
            end_time=self.operating_end_time,
            slot_interval_minutes=self.slot_interval_minutes,
            max_occupants_per_slot=self.max_occupants_per_slot,
            window_duration_minutes=self.window_duration_minutes,
        )


@lru_cache
def get_settings() -> Settings:
    return Settings(
        app_name=os.getenv("APP_NAME", "Tee-sheet Lottery Service"),
        app_version=os.getenv("APP_VERSION", "0.1.0"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        database_path=Path(os.getenv("DATABASE_PATH", "data/teesheet.db")),
        operating_start_time=os.getenv("OPERATING_START_TIME", "07:00"),
        operating_end_time=os.getenv("OPERATING_END_TIME", "19:00"),
        slot_interval_minutes=_env_int("SLOT_INTERVAL_MINUTES", 10),
        max_occupants_per_slot=_env_int("MAX_OCCUPANTS_PER_SLOT", 4),
        window_duration_minutes=_env_int("WINDOW_DURATION_MINUTES", 180),
        max_group_members=_env_int("MAX_GROUP_MEMBERS", 4),
        fairness_step=_env_int("FAIRNESS_STEP", 1),
        fairness_min_score=_env_int("FAIRNESS_MIN_SCORE", -10),
        fairness_max_score=_env_int("FAIRNESS_MAX_SCORE", 10),
        fairness_default_score=_env_int("FAIRNESS_DEFAULT_SCORE", 0),
        seed_demo_data=_env_bool("SEED_DEMO_DATA", True),
    )
