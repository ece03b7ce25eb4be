import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_SESSION_SECRET = "mediguard-dev-session-secret"


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_str(name: str) -> Optional[str]:
    value = os.environ.get(name, "").strip()
    return value or None


@dataclass
class Settings:
    """Runtime configuration, read from the environment (and a local .env)."""

    openai_api_key: Optional[str] = None
    openai_model: str = DEFAULT_MODEL
    openai_base_url: Optional[str] = None
    openai_timeout: float = 60.0
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    session_secret: str = DEFAULT_SESSION_SECRET
    cors_allow_origins: List[str] = field(default_factory=lambda: ["*"])
    guest_analysis_limit: int = 3
    max_upload_bytes: int = 15 * 1024 * 1024
    max_pdf_pages: int = 5
    log_level: str = "INFO"

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)


def load_settings() -> Settings:
    load_dotenv()
    origins = [o.strip() for o in os.environ.get("CORS_ALLOW_ORIGINS", "*").split(",") if o.strip()]
    return Settings(
        openai_api_key=_env_str("OPENAI_API_KEY"),
        openai_model=_env_str("OPENAI_MODEL") or DEFAULT_MODEL,
        openai_base_url=_env_str("OPENAI_BASE_URL"),
        openai_timeout=_env_float("OPENAI_TIMEOUT", 60.0),
        supabase_url=_env_str("SUPABASE_URL"),
        supabase_key=_env_str("SUPABASE_KEY"),
        session_secret=_env_str("SESSION_SECRET") or DEFAULT_SESSION_SECRET,
        cors_allow_origins=origins or ["*"],
        guest_analysis_limit=_env_int("GUEST_ANALYSIS_LIMIT", 3),
        max_upload_bytes=_env_int("MAX_UPLOAD_BYTES", 15 * 1024 * 1024),
        max_pdf_pages=_env_int("MAX_PDF_PAGES", 5),
        log_level=(_env_str("LOG_LEVEL") or "INFO").upper(),
    )


@lru_cache
def get_settings() -> Settings:
    return load_settings()
