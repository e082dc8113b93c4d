"""
Application settings loaded from the environment.
"""
import os
from functools import lru_cache

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).lower() in ("true", "1", "yes", "on")


class Settings(BaseModel):
    mongo_url: str = "mongodb://localhost:27017"
    db_name: str = "fulfillment"

    # Search radii in meters, per request kind
    blood_search_radius_m: int = 20000
    plasma_search_radius_m: int = 50000
    organ_search_radius_m: int = 50000
    donor_base_radius_m: int = 10000

    donor_cooldown_days: int = 56
    plasma_min_gap_days: int = 14
    unit_shelf_life_days: int = 42

    fanout_concurrency: int = 8
    match_timeout_s: float = 5.0
    notify_timeout_s: float = 5.0

    expiry_sweep_interval_s: float = 3600.0
    reconcile_on_sweep: bool = False

    log_level: str = "INFO"
    log_json: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            mongo_url=os.environ.get("MONGO_URL", cls.model_fields["mongo_url"].default),
            db_name=os.environ.get("DB_NAME", cls.model_fields["db_name"].default),
            blood_search_radius_m=int(os.environ.get("BLOOD_SEARCH_RADIUS_M", "20000")),
            plasma_search_radius_m=int(os.environ.get("PLASMA_SEARCH_RADIUS_M", "50000")),
            organ_search_radius_m=int(os.environ.get("ORGAN_SEARCH_RADIUS_M", "50000")),
            donor_base_radius_m=int(os.environ.get("DONOR_BASE_RADIUS_M", "10000")),
            donor_cooldown_days=int(os.environ.get("DONOR_COOLDOWN_DAYS", "56")),
            plasma_min_gap_days=int(os.environ.get("PLASMA_MIN_GAP_DAYS", "14")),
            unit_shelf_life_days=int(os.environ.get("UNIT_SHELF_LIFE_DAYS", "42")),
            fanout_concurrency=int(os.environ.get("FANOUT_CONCURRENCY", "8")),
            match_timeout_s=float(os.environ.get("MATCH_TIMEOUT_S", "5")),
            notify_timeout_s=float(os.environ.get("NOTIFY_TIMEOUT_S", "5")),
            expiry_sweep_interval_s=float(os.environ.get("EXPIRY_SWEEP_INTERVAL_S", "3600")),
            reconcile_on_sweep=_env_bool("RECONCILE_ON_SWEEP"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
            log_json=_env_bool("LOG_JSON"),
        )

    def search_radius_for(self, kind) -> int:
        """Default NGO search radius for a request kind."""
        value = getattr(kind, "value", kind)
        return {
            "blood": self.blood_search_radius_m,
            "plasma": self.plasma_search_radius_m,
            "organ": self.organ_search_radius_m,
        }[value]


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
