"""Live engagement engine configuration"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.models.credential import Credential

logger = logging.getLogger(__name__)

# === Path Configuration ===
YTLIVE_DIR = Path(__file__).parent.parent
BACKEND_DIR = YTLIVE_DIR.parent

OAUTH_SCOPES = [
    "https://www.googleapis.com/auth/youtube.force-ssl",  # chat insert/delete, bans
    "https://www.googleapis.com/auth/youtube.readonly",  # search, messages, moderators
]

CREDENTIAL_SLOTS = 3


class EngineSettings(BaseSettings):
    """Engine settings, read from the environment and ``backend/.env``."""

    model_config = SettingsConfigDict(
        env_file=BACKEND_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = Field(..., description="PostgreSQL database URL")

    # Google OAuth / YouTube Data API (slot 1 falls back to the unsuffixed names)
    google_redirect_uri: str = Field(
        default="http://localhost:3000/bot/oauth/callback", description="OAuth redirect URI"
    )
    google_client_id: str = Field(default="")
    google_client_secret: str = Field(default="")
    youtube_api_key: str = Field(default="")
    gemini_api_key: str = Field(default="")
    google_client_id_1: str = Field(default="")
    google_client_secret_1: str = Field(default="")
    youtube_api_key_1: str = Field(default="")
    gemini_api_key_1: str = Field(default="")
    google_client_id_2: str = Field(default="")
    google_client_secret_2: str = Field(default="")
    youtube_api_key_2: str = Field(default="")
    gemini_api_key_2: str = Field(default="")
    google_client_id_3: str = Field(default="")
    google_client_secret_3: str = Field(default="")
    youtube_api_key_3: str = Field(default="")
    gemini_api_key_3: str = Field(default="")

    # AI answers (OpenAI-compatible Gemini endpoint)
    ai_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta/openai/",
        description="OpenAI-compatible endpoint for !ask",
    )
    ai_model: str = Field(default="gemini-2.0-flash", description="Model used for !ask")
    ai_max_chars: int = Field(default=150, description="Max characters of an !ask answer")

    # Chat loop timing
    poll_interval_seconds: float = Field(default=3.0, gt=0)
    live_check_interval_seconds: float = Field(default=60.0, gt=0)

    # Economy
    award_interval_minutes: int = Field(default=10, gt=0)
    award_points: int = Field(default=10, ge=0)
    gamble_cooldown_seconds: int = Field(default=300, ge=0)
    gamble_all_cap: int = Field(default=3000, gt=0)
    ask_cooldown_seconds: int = Field(default=60, ge=0)

    # Moderation
    away_threshold_minutes: int = Field(default=30, gt=0)
    timeout_seconds: int = Field(default=60, gt=0)
    auto_message_activity_minutes: int = Field(default=10, gt=0)

    # Health server
    health_port: int = Field(default=4345, description="Health/status HTTP port")

    # Environment
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Validate database URL starts with postgresql://"""
        if not v.startswith(("postgresql://", "postgres://")):
            raise ValueError("DATABASE_URL must start with 'postgresql://'")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            logger.warning(f"Invalid log level '{v}', defaulting to INFO")
            return "INFO"
        return v_upper

    def credential_slots(self) -> list[Credential]:
        """Credentials described by the environment, in priority order.

        Slots missing any of client id, client secret or API key are skipped.
        """
        slots: list[Credential] = []
        for n in range(1, CREDENTIAL_SLOTS + 1):
            client_id = getattr(self, f"google_client_id_{n}")
            client_secret = getattr(self, f"google_client_secret_{n}")
            api_key = getattr(self, f"youtube_api_key_{n}")
            ai_key = getattr(self, f"gemini_api_key_{n}")
            if n == 1:
                client_id = client_id or self.google_client_id
                client_secret = client_secret or self.google_client_secret
                api_key = api_key or self.youtube_api_key
                ai_key = ai_key or self.gemini_api_key

            if not (client_id and client_secret and api_key):
                logger.info(f"Skipping credential slot project-{n}: missing secrets")
                continue

            slots.append(
                Credential(
                    credential_id=f"project-{n}",
                    client_id=client_id,
                    client_secret=client_secret,
                    api_key=api_key,
                    ai_api_key=ai_key,
                    priority=n,
                )
            )
        return slots


@lru_cache
def get_settings() -> EngineSettings:
    """Get cached settings instance"""
    return EngineSettings()  # type: ignore[call-arg]
