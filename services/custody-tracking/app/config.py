"""Runtime configuration for the custody-tracking service."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache


DEFAULT_ANOMALY_MULTIPLIER = "1.5"
DEFAULT_EXPECTED_TRAVEL_MINUTES = "30"
DEFAULT_MAX_EVIDENCE_BYTES = str(10 * 1024 * 1024)
DEFAULT_EVIDENCE_UPLOAD_TIMEOUT_SECONDS = "30"
DEFAULT_EVIDENCE_ALLOWED_MIME_TYPES = "image/jpeg,image/jpg,image/png,image/webp"

DEFAULT_MINIO_ENDPOINT = "localhost:9000"
DEFAULT_MINIO_ACCESS_KEY = "minioadmin"
DEFAULT_MINIO_SECRET_KEY = "minioadmin"
DEFAULT_MINIO_BUCKET = "custody-evidence"

DEFAULT_JWT_SECRET_KEY = "change-me-in-production"
DEFAULT_JWT_ALGORITHM = "HS256"
DEFAULT_ADMIN_ROLES = "ADMIN,SUPER_ADMIN"
DEFAULT_COURIER_ROLES = "DELIVERY"


def _env_list(name: str, default: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in os.getenv(name, default).split(",") if item.strip())


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    anomaly_multiplier: float = 1.5
    default_expected_travel_minutes: int = 30
    max_evidence_bytes: int = 10 * 1024 * 1024
    evidence_upload_timeout_seconds: float = 30.0
    evidence_allowed_mime_types: tuple[str, ...] = ("image/jpeg", "image/jpg", "image/png", "image/webp")

    minio_endpoint: str = DEFAULT_MINIO_ENDPOINT
    minio_access_key: str = DEFAULT_MINIO_ACCESS_KEY
    minio_secret_key: str = DEFAULT_MINIO_SECRET_KEY
    minio_secure: bool = False
    minio_bucket: str = DEFAULT_MINIO_BUCKET
    minio_public_url: str | None = None

    jwt_secret_key: str = DEFAULT_JWT_SECRET_KEY
    jwt_algorithm: str = DEFAULT_JWT_ALGORITHM
    admin_roles: tuple[str, ...] = ("ADMIN", "SUPER_ADMIN")
    courier_roles: tuple[str, ...] = ("DELIVERY",)

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables, falling back to defaults."""

        mime_types = os.getenv("EVIDENCE_ALLOWED_MIME_TYPES", DEFAULT_EVIDENCE_ALLOWED_MIME_TYPES)
        return cls(
            anomaly_multiplier=float(os.getenv("ANOMALY_MULTIPLIER", DEFAULT_ANOMALY_MULTIPLIER)),
            default_expected_travel_minutes=int(
                os.getenv("DEFAULT_EXPECTED_TRAVEL_MINUTES", DEFAULT_EXPECTED_TRAVEL_MINUTES)
            ),
            max_evidence_bytes=int(os.getenv("MAX_EVIDENCE_BYTES", DEFAULT_MAX_EVIDENCE_BYTES)),
            evidence_upload_timeout_seconds=float(
                os.getenv("EVIDENCE_UPLOAD_TIMEOUT_SECONDS", DEFAULT_EVIDENCE_UPLOAD_TIMEOUT_SECONDS)
            ),
            evidence_allowed_mime_types=tuple(
                item.strip().lower() for item in mime_types.split(",") if item.strip()
            ),
            minio_endpoint=os.getenv("MINIO_ENDPOINT", DEFAULT_MINIO_ENDPOINT),
            minio_access_key=os.getenv("MINIO_ACCESS_KEY", DEFAULT_MINIO_ACCESS_KEY),
            minio_secret_key=os.getenv("MINIO_SECRET_KEY", DEFAULT_MINIO_SECRET_KEY),
            minio_secure=_env_bool("MINIO_SECURE", False),
            minio_bucket=os.getenv("MINIO_BUCKET", DEFAULT_MINIO_BUCKET),
            minio_public_url=os.getenv("MINIO_PUBLIC_URL") or None,
            jwt_secret_key=os.getenv("JWT_SECRET_KEY", DEFAULT_JWT_SECRET_KEY),
            jwt_algorithm=os.getenv("JWT_ALGORITHM", DEFAULT_JWT_ALGORITHM),
            admin_roles=_env_list("ADMIN_ROLES", DEFAULT_ADMIN_ROLES),
            courier_roles=_env_list("COURIER_ROLES", DEFAULT_COURIER_ROLES),
        )


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
