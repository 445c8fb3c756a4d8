from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_CORS_ORIGINS = "http://localhost:3000,http://127.0.0.1:3000"
DEFAULT_MODELS = {
    "gemini": "gemini-1.5-flash",
    "openai": "gpt-4.1-mini",
}
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class AnalyzerSettings:
    llm_provider: str = "gemini"
    llm_api_key: str | None = None
    llm_model: str = DEFAULT_MODELS["gemini"]
    temperature: float = 0.3
    max_output_tokens: int = 1024
    max_attempts: int = 3
    initial_backoff_seconds: float = 1.0
    http_timeout_seconds: float = 30.0

    rate_limiter: str = "fixed"
    request_delay_seconds: float = 2.0
    max_concurrency: int = 4

    min_line_length: int = 10
    max_lines: int = 50
    max_chars: int | None = None

    data_dir: Path = Path("data")
    jwt_secret: str = "change-me"
    cors_allowed_origins: tuple[str, ...] = ("http://localhost:3000", "http://127.0.0.1:3000")


def normalize_provider(value: str | None) -> str:
    provider = (value or "gemini").strip().lower()
    if provider in {"chatgpt", "openai"}:
        return "openai"
    return provider


def _env_str(name: str, default: str | None = None) -> str | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


def _env_int(name: str, default: int, *, minimum: int | None = None) -> int:
    raw = _env_str(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring invalid integer for %s: %r (using %s).", name, raw, default)
        return default
    if minimum is not None and value < minimum:
        logger.warning("Ignoring %s=%s below minimum %s (using %s).", name, value, minimum, default)
        return default
    return value


def _env_float(name: str, default: float, *, minimum: float | None = None) -> float:
    raw = _env_str(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring invalid number for %s: %r (using %s).", name, raw, default)
        return default
    if minimum is not None and value < minimum:
        logger.warning("Ignoring %s=%s below minimum %s (using %s).", name, value, minimum, default)
        return default
    return value


def _split_origins(raw: str) -> tuple[str, ...]:
    return tuple(origin.strip() for origin in raw.split(",") if origin.strip())


def load_settings() -> AnalyzerSettings:
    provider = normalize_provider(_env_str("ANALYZER_LLM_PROVIDER", "gemini"))
    key_name = "OPENAI_API_KEY" if provider == "openai" else "GEMINI_API_KEY"
    max_chars_raw = _env_int("ANALYZER_MAX_CHARS", 0, minimum=0)

    return AnalyzerSettings(
        llm_provider=provider,
        llm_api_key=_env_str(key_name),
        llm_model=_env_str("ANALYZER_LLM_MODEL", DEFAULT_MODELS.get(provider, DEFAULT_MODELS["gemini"])),
        temperature=_env_float("ANALYZER_TEMPERATURE", 0.3, minimum=0.0),
        max_output_tokens=_env_int("ANALYZER_MAX_OUTPUT_TOKENS", 1024, minimum=1),
        max_attempts=_env_int("ANALYZER_MAX_ATTEMPTS", 3, minimum=1),
        initial_backoff_seconds=_env_float("ANALYZER_INITIAL_BACKOFF_SECONDS", 1.0, minimum=0.0),
        http_timeout_seconds=_env_float("ANALYZER_HTTP_TIMEOUT_SECONDS", 30.0, minimum=1.0),
        rate_limiter=(_env_str("ANALYZER_RATE_LIMITER", "fixed") or "fixed").lower(),
        request_delay_seconds=_env_float("ANALYZER_REQUEST_DELAY_SECONDS", 2.0, minimum=0.0),
        max_concurrency=_env_int("ANALYZER_MAX_CONCURRENCY", 4, minimum=1),
        min_line_length=_env_int("ANALYZER_MIN_LINE_LENGTH", 10, minimum=0),
        max_lines=_env_int("ANALYZER_MAX_LINES", 50, minimum=1),
        max_chars=max_chars_raw or None,
        data_dir=Path(_env_str("ANALYZER_DATA_DIR", "data")),
        jwt_secret=_env_str("ANALYZER_JWT_SECRET", "change-me"),
        cors_allowed_origins=_split_origins(
            os.getenv("ANALYZER_CORS_ALLOWED_ORIGINS", DEFAULT_CORS_ORIGINS)
        ),
    )


def configure_logging(level: str | None = None) -> None:
    selected = (level or os.getenv("ANALYZER_LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(level=getattr(logging, selected, logging.INFO), format=LOG_FORMAT)
