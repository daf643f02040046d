# services/config.py
from __future__ import annotations
import os

# ------------------------------------------------------------------------------
# Helper: get env var with fallback
# ------------------------------------------------------------------------------
def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return v if v is not None and v != "" else default

def _env_bool(name: str, default: bool) -> bool:
    return _env(name, "true" if default else "false").strip().lower() in {"1", "true", "t", "yes", "y"}

# ------------------------------------------------------------------------------
# Database (Tortoise)
# ------------------------------------------------------------------------------
DATABASE_URL: str = _env("DATABASE_URL", "sqlite://./db.sqlite3")
# connection name handed to every component that touches storage
DB_CONNECTION: str = _env("DB_CONNECTION", "default")

# ------------------------------------------------------------------------------
# SELIC monthly rate series
# ------------------------------------------------------------------------------
SELIC_CSV_PATH: str = _env("SELIC_CSV_PATH", "data/selic_rates.csv")
LOAD_SELIC_ON_STARTUP: bool = _env_bool("LOAD_SELIC_ON_STARTUP", True)

# ------------------------------------------------------------------------------
# Bill ingestion / extraction
# ------------------------------------------------------------------------------
BILL_EXTRACTOR: str = _env("BILL_EXTRACTOR", "document")  # "document" | "fake"
MAX_BUNDLE_BYTES: int = int(_env("MAX_BUNDLE_BYTES", str(50 * 1024 * 1024)))
TESSERACT_LANG: str = _env("TESSERACT_LANG", "por")

# ---------------- CSV map (YAML) ----------------
REPORT_CSV_MAP_FILE: str = _env("REPORT_CSV_MAP_FILE", "config/report_csv_map.yaml")

# ------------------------------------------------------------------------------
# Auth / HTTP
# ------------------------------------------------------------------------------
SECRET_KEY: str = _env("SECRET_KEY", "change-me")
REFRESH_SECRET: str = _env("REFRESH_SECRET", "change-me-too")
JWT_ALGORITHM: str = _env("JWT_ALGORITHM", "HS256")
ADMIN_USERNAME: str = _env("ADMIN_USERNAME", "admin")
ADMIN_EMAIL: str = _env("ADMIN_EMAIL", "admin@example.com")
ADMIN_PASSWORD: str = _env("ADMIN_PASSWORD", "password123")
LOG_LEVEL: str = _env("LOG_LEVEL", "INFO").upper()
CORS_ORIGINS: list[str] = [
    o.strip() for o in _env("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",") if o.strip()
]
