from __future__ import annotations
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional, Tuple

from dotenv import load_dotenv

load_dotenv(dotenv_path=os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), ".env"))


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_origins() -> Tuple[str, ...]:
    raw = os.getenv("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173")
    return tuple(o.strip() for o in raw.split(",") if o.strip())


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite+aiosqlite:///./physio.db"
    db_echo: bool = False

    # 인증은 외부 IdP(Supabase)가 발급한 HS256 토큰을 검증만 한다.
    jwt_secret: Optional[str] = None
    jwt_algorithm: str = "HS256"
    jwt_audience: Optional[str] = "authenticated"

    ai_api_base_url: str = "https://openrouter.ai/api/v1"
    ai_api_key: Optional[str] = None
    ai_default_model: str = "openai/gpt-4o-mini"
    ai_default_temperature: float = 0.7
    ai_min_temperature: float = 0.0
    ai_max_temperature: float = 1.2
    ai_min_context_length: int = 120
    ai_prompt_override_limit: int = 256
    ai_provider_timeout_s: float = 60.0
    ai_referer: Optional[str] = None

    cors_origins: Tuple[str, ...] = field(default_factory=tuple)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            db_echo=_env_bool("DB_ECHO", False),
            jwt_secret=os.getenv("SUPABASE_JWT_SECRET") or None,
            jwt_audience=os.getenv("JWT_AUDIENCE", "authenticated") or None,
            ai_api_base_url=os.getenv("AI_API_BASE_URL", cls.ai_api_base_url),
            ai_api_key=os.getenv("AI_API_KEY") or None,
            ai_default_model=os.getenv("AI_DEFAULT_MODEL", cls.ai_default_model),
            ai_default_temperature=float(os.getenv("AI_DEFAULT_TEMPERATURE", "0.7")),
            ai_min_temperature=float(os.getenv("AI_MIN_TEMPERATURE", "0")),
            ai_max_temperature=float(os.getenv("AI_MAX_TEMPERATURE", "1.2")),
            ai_min_context_length=int(os.getenv("AI_MIN_CONTEXT_LENGTH", "120")),
            ai_prompt_override_limit=int(os.getenv("AI_PROMPT_OVERRIDE_LIMIT", "256")),
            ai_provider_timeout_s=float(os.getenv("AI_PROVIDER_TIMEOUT_S", "60")),
            ai_referer=os.getenv("AI_REFERER") or None,
            cors_origins=_env_origins(),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

    def validate(self) -> "Settings":
        """잘못된 AI 설정은 기동 시점에 바로 실패시킨다."""
        if not self.ai_default_model.strip():
            raise ValueError("AI_DEFAULT_MODEL must not be empty")
        if self.ai_min_temperature > self.ai_max_temperature:
            raise ValueError("AI_MIN_TEMPERATURE must be <= AI_MAX_TEMPERATURE")
        if not self.ai_min_temperature <= self.ai_default_temperature <= self.ai_max_temperature:
            raise ValueError("AI_DEFAULT_TEMPERATURE must be within the configured range")
        if not 1 <= self.ai_min_context_length <= 1000:
            raise ValueError("AI_MIN_CONTEXT_LENGTH must be between 1 and 1000")
        if self.ai_prompt_override_limit < 1:
            raise ValueError("AI_PROMPT_OVERRIDE_LIMIT must be positive")
        if self.ai_provider_timeout_s <= 0:
            raise ValueError("AI_PROVIDER_TIMEOUT_S must be positive")
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env().validate()
