# services/config.py
from __future__ import annotations
import os

# ------------------------------------------------------------------------------
# Helper: get env var with fallback
# ------------------------------------------------------------------------------
def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return v if v is not None and v != "" else default

# If you use python-dotenv, uncomment these two lines:
# from dotenv import load_dotenv
# load_dotenv()  # loads values from a local .env file if present

# ------------------------------------------------------------------------------
# Database
# ------------------------------------------------------------------------------
DB_URL: str = _env("DB_URL", "sqlite://./db.sqlite3")

# ------------------------------------------------------------------------------
# Auth (JWT)
# ------------------------------------------------------------------------------
SECRET_KEY: str = _env("SECRET_KEY", "change-me-access-secret")
REFRESH_SECRET: str = _env("REFRESH_SECRET", "change-me-refresh-secret")
ALGORITHM: str = _env("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_SECONDS: int = int(_env("ACCESS_TOKEN_EXPIRE_SECONDS", str(15 * 60)))
REFRESH_TOKEN_EXPIRE_SECONDS: int = int(_env("REFRESH_TOKEN_EXPIRE_SECONDS", str(7 * 24 * 3600)))

# First admin created on an empty users table
ADMIN_USERNAME: str = _env("ADMIN_USERNAME", "admin")
ADMIN_PASSWORD: str = _env("ADMIN_PASSWORD", "Admin@123")

# ------------------------------------------------------------------------------
# HTTP
# ------------------------------------------------------------------------------
CORS_ORIGINS: list[str] = [
    o.strip()
    for o in _env("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",")
    if o.strip()
]

# ------------------------------------------------------------------------------
# Billing
# ------------------------------------------------------------------------------
# Overdue statuses are derived on every read/write; this optional sweep only
# materializes them for reports. 0 disables it.
OVERDUE_SWEEP_SECONDS: int = int(_env("OVERDUE_SWEEP_SECONDS", "0"))

CURRENCY: str = _env("CURRENCY", "PHP")

# "today" for due-date comparisons is taken in this zone
BILLING_TZ: str = _env("BILLING_TZ", "Asia/Manila")

# ------------------------------------------------------------------------------
# Public account inquiry
# ------------------------------------------------------------------------------
INQUIRY_RATE_LIMIT: int = int(_env("INQUIRY_RATE_LIMIT", "10"))
INQUIRY_RATE_WINDOW_SECONDS: int = int(_env("INQUIRY_RATE_WINDOW_SECONDS", str(5 * 60)))
INQUIRY_MONTHS: int = int(_env("INQUIRY_MONTHS", "12"))
