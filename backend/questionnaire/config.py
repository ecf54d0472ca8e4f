# questionnaire/config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


def _env_str(key: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(key)
    if v is None:
        return default
    v = v.strip()
    return v if v else default


def _env_int(key: str, default: int) -> int:
    v = _env_str(key)
    if v is None:
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _env_float(key: str, default: float) -> float:
    v = _env_str(key)
    if v is None:
        return default
    try:
        return float(v)
    except ValueError:
        return default


def _env_bool(key: str, default: bool) -> bool:
    v = _env_str(key)
    if v is None:
        return default
    return v.lower() in {"1", "true", "yes", "y", "on"}


@dataclass(frozen=True)
class Settings:
    # Storage
    data_dir: str
    storage_backend: str  # 'local' or 's3'
    s3_bucket: str
    aws_region: str

    # HTTP
    cors_origins: tuple[str, ...]
    static_dir: str

    # Emotion classification (disabled when no API key)
    gemini_api_key: Optional[str]
    emotion_model: str
    emotion_timeout_seconds: float
    emotion_max_retries: int

    # Proxy
    backend_url: str
    proxy_timeout_seconds: float
    proxy_verify_tls: bool

    # Logging
    log_level: str
    log_json: bool

    @staticmethod
    def from_env() -> "Settings":
        # Read configuration from environment variables.
        # Defaults are local-friendly: file storage under ./data, no classifier.
        origins = _env_str("CORS_ORIGINS", "http://localhost:5173") or ""
        return Settings(
            data_dir=_env_str("DATA_DIR", "data") or "data",
            storage_backend=(_env_str("STORAGE_BACKEND", "local") or "local").lower(),
            s3_bucket=_env_str("S3_BUCKET", "questionnaire-data") or "questionnaire-data",
            aws_region=_env_str("AWS_REGION", "ap-southeast-1") or "ap-southeast-1",

            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
            static_dir=_env_str("STATIC_DIR", "public") or "public",

            gemini_api_key=_env_str("GEMINI_API_KEY"),
            emotion_model=_env_str("EMOTION_MODEL", "models/gemini-1.5-flash") or "models/gemini-1.5-flash",
            emotion_timeout_seconds=_env_float("EMOTION_TIMEOUT_SECONDS", 10.0),
            emotion_max_retries=_env_int("EMOTION_MAX_RETRIES", 2),

            backend_url=(_env_str("BACKEND_URL", "") or "").rstrip("/"),
            proxy_timeout_seconds=_env_float("PROXY_TIMEOUT_SECONDS", 30.0),
            proxy_verify_tls=_env_bool("PROXY_VERIFY_TLS", False),

            log_level=_env_str("LOG_LEVEL", "INFO") or "INFO",
            log_json=_env_bool("LOG_JSON", True),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
