"""Environment configuration using pydantic-settings."""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

import structlog
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from portfolio_chat_api.quota import QuotaPolicy

logger = structlog.get_logger()


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Mock control (opt-in feature gate for testing)
    mock_openai: bool = False  # Use mock ChatKit sessions and assessments (don't call OpenAI)

    # OpenAI configuration (ChatKit sessions + job fit completions)
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    chatkit_workflow_id: str = ""
    llm_model: str = "gpt-4o"
    http_timeout_seconds: float = 30.0

    # Clerk (authentication + subscription metadata)
    clerk_secret_key: str = ""
    clerk_api_url: str = "https://api.clerk.com/v1"
    clerk_jwks_url: str = ""
    clerk_jwt_key: str = ""  # PEM public key for networkless verification
    clerk_authorized_parties: list[str] = []

    # Usage store (empty URL -> in-process store)
    redis_url: str = ""
    redis_timeout_seconds: float = 2.0
    usage_timezone: str = "UTC"
    usage_key_ttl_seconds: int = 172800  # 48 hours, past days age out

    # Daily message allowances
    guest_daily_limit: int = 3
    free_daily_limit: int = 5
    recruiter_daily_limit: int = 20

    # Rate limiting (job fit endpoint)
    rate_limit_per_minute: int = 10

    # Server configuration
    port: int = 3000
    host: str = "0.0.0.0"
    cors_origins: list[str] = ["*"]
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    environment: Literal["development", "production"] = "development"

    # Candidate résumé used by the job fit scorer (built-in profile if unset)
    resume_path: str = ""

    @model_validator(mode="after")
    def _check_quota_ordering(self) -> "Settings":
        # Raises ValueError if guest < free < recruiter does not hold
        QuotaPolicy(
            guest=self.guest_daily_limit,
            free=self.free_daily_limit,
            recruiter=self.recruiter_daily_limit,
        )
        return self

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    @property
    def quota_policy(self) -> QuotaPolicy:
        """Daily allowances built from the configured limits."""
        return QuotaPolicy(
            guest=self.guest_daily_limit,
            free=self.free_daily_limit,
            recruiter=self.recruiter_daily_limit,
        )

    def load_resume(self) -> Optional[str]:
        """Load the candidate résumé from RESUME_PATH.

        Returns:
            Résumé text if the file exists and is readable, None otherwise.
        """
        if not self.resume_path:
            return None

        path = Path(self.resume_path)
        if not path.exists():
            logger.warning("Resume file not found, using built-in profile", path=str(path))
            return None

        try:
            text = path.read_text(encoding="utf-8").strip()
        except (IOError, UnicodeDecodeError) as e:
            logger.error("Failed to read resume file", path=str(path), error=str(e))
            return None
        return text or None


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
