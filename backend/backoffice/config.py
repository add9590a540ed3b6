# backend/backoffice/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/backoffice.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///backoffice.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Administrative DB tools (dependents, cascade/bulk delete, row editing)
    # are off unless explicitly enabled for the deployment.
    ADMIN_TOOLS_ENABLED = _env_flag("ADMIN_TOOLS_ENABLED")

    # Only enable behind a gateway that strips client-supplied X-User-* headers.
    TRUST_IDENTITY_HEADERS = _env_flag("TRUST_IDENTITY_HEADERS")

    # Optional callable(request) -> Identity | None, overrides header identity.
    IDENTITY_PROVIDER = None

    DEPENDENT_SAMPLE_LIMIT = int(os.environ.get("DEPENDENT_SAMPLE_LIMIT", "5"))

    # Hard bulk delete is refused on these tables (soft delete still allowed).
    CRITICAL_TABLES = tuple(
        t.strip()
        for t in os.environ.get("CRITICAL_TABLES", "users,branches").split(",")
        if t.strip()
    )

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
