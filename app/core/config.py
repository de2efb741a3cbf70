from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()

def _get_env(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value


def _get_env_bool(name: str, default: bool) -> bool:
    raw = _get_env(name, None)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _get_env_int(name: str, default: int) -> int:
    raw = _get_env(name, None)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_env_float(name: str, default: float) -> float:
    raw = _get_env(name, None)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _get_env_list(name: str, default: list[str]) -> tuple[str, ...]:
    raw = _get_env(name, None)
    if raw is None:
        return tuple(default)
    values = [item.strip() for item in raw.split(",")]
    clean = [item for item in values if item]
    return tuple(clean) if clean else tuple(default)


@dataclass(frozen=True)
class Settings:
    api_key: str | None
    rate_limit: str
    rate_limit_enabled: bool
    synthesis_rate_limit: str
    log_level: str
    sentry_dsn: str | None
    cors_allowed_origins: tuple[str, ...]
    cors_allow_origin_regex: str | None
    cors_allow_credentials: bool
    identity_db_path: str
    synthesis_batch_size: int
    retrieval_similarity_threshold: float
    retrieval_max_claims: int
    synthesis_max_output_tokens: int
    synthesis_temperature: float
    embedding_provider: str
    embedding_model: str
    embedding_dimensions: int
    analytics_enabled: bool
    analytics_db_path: str
    analytics_retention_days: int


settings = Settings(
    api_key=_get_env("API_KEY"),
    rate_limit=_get_env("RATE_LIMIT", "30/minute") or "30/minute",
    rate_limit_enabled=_get_env_bool("RATE_LIMIT_ENABLED", True),
    synthesis_rate_limit=_get_env("SYNTHESIS_RATE_LIMIT", "5/minute") or "5/minute",
    log_level=_get_env("LOG_LEVEL", "INFO") or "INFO",
    sentry_dsn=_get_env("SENTRY_DSN"),
    cors_allowed_origins=_get_env_list(
        "CORS_ALLOWED_ORIGINS",
        [
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:3000",
        ],
    ),
    cors_allow_origin_regex=_get_env("CORS_ALLOW_ORIGIN_REGEX"),
    cors_allow_credentials=_get_env_bool("CORS_ALLOW_CREDENTIALS", False),
    identity_db_path=_get_env("IDENTITY_DB_PATH", "data/identity.db") or "data/identity.db",
    synthesis_batch_size=_get_env_int("SYNTHESIS_BATCH_SIZE", 10),
    retrieval_similarity_threshold=_get_env_float("RETRIEVAL_SIMILARITY_THRESHOLD", 0.5),
    retrieval_max_claims=_get_env_int("RETRIEVAL_MAX_CLAIMS", 25),
    synthesis_max_output_tokens=_get_env_int("SYNTHESIS_MAX_OUTPUT_TOKENS", 2000),
    synthesis_temperature=_get_env_float("SYNTHESIS_TEMPERATURE", 0.0),
    embedding_provider=(_get_env("EMBEDDING_PROVIDER", "openai") or "openai").strip().lower(),
    embedding_model=_get_env("EMBEDDING_MODEL", "text-embedding-3-small") or "text-embedding-3-small",
    embedding_dimensions=_get_env_int("EMBEDDING_DIMENSIONS", 1536),
    analytics_enabled=_get_env_bool("ANALYTICS_ENABLED", True),
    analytics_db_path=_get_env("ANALYTICS_DB_PATH", "data/analytics.db") or "data/analytics.db",
    analytics_retention_days=_get_env_int("ANALYTICS_RETENTION_DAYS", 180),
)

if settings.synthesis_batch_size <= 0:
    raise RuntimeError("SYNTHESIS_BATCH_SIZE must be greater than 0.")

if not 0.0 <= settings.retrieval_similarity_threshold <= 1.0:
    raise RuntimeError("RETRIEVAL_SIMILARITY_THRESHOLD must be between 0 and 1.")

if settings.embedding_provider not in {"openai", "sentence-transformers", "simple"}:
    raise RuntimeError(
        "EMBEDDING_PROVIDER must be one of 'openai', 'sentence-transformers' or 'simple'."
    )
