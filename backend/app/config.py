from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple

BASE_DIR = Path(__file__).resolve().parents[1]

QUEUE_SCOPE_FACILITY = "facility"
QUEUE_SCOPE_ALL = "all"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    db_path: Path = BASE_DIR / "care.db"
    secret_key: str = "dev-secret-change-me"
    token_expire_hours: int = 24
    # "all" shows every hospital's pending requests; debugging only.
    queue_scope: str = QUEUE_SCOPE_FACILITY
    log_level: str = "INFO"
    cors_origins: Tuple[str, ...] = ("*",)
    seed_default_accounts: bool = True
    default_hospital_name: str = "HospitalAdmin"
    default_hospital_password: str = "admin123"
    default_hospital_lat: float = 12.9716
    default_hospital_lng: float = 77.5946
    admin_username: str = "admin"
    admin_password: str = "password123"

    @classmethod
    def from_env(cls) -> "Settings":
        scope = os.getenv("QUEUE_SCOPE", QUEUE_SCOPE_FACILITY).strip().lower()
        if scope not in {QUEUE_SCOPE_FACILITY, QUEUE_SCOPE_ALL}:
            raise ValueError(f"QUEUE_SCOPE must be '{QUEUE_SCOPE_FACILITY}' or '{QUEUE_SCOPE_ALL}', got {scope!r}")
        return cls(
            db_path=Path(os.getenv("CARE_DB_PATH", str(BASE_DIR / "care.db"))),
            secret_key=os.getenv("SECRET_KEY", "dev-secret-change-me"),
            token_expire_hours=int(os.getenv("TOKEN_EXPIRE_HOURS", "24")),
            queue_scope=scope,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            cors_origins=tuple(o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()),
            seed_default_accounts=_env_bool("SEED_DEFAULT_ACCOUNTS", "true"),
            default_hospital_name=os.getenv("DEFAULT_HOSPITAL_NAME", "HospitalAdmin"),
            default_hospital_password=os.getenv("DEFAULT_HOSPITAL_PASSWORD", "admin123"),
            default_hospital_lat=float(os.getenv("DEFAULT_HOSPITAL_LAT", "12.9716")),
            default_hospital_lng=float(os.getenv("DEFAULT_HOSPITAL_LNG", "77.5946")),
            admin_username=os.getenv("ADMIN_USERNAME", "admin"),
            admin_password=os.getenv("ADMIN_PASSWORD", "password123"),
        )


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
