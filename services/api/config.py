"""
Configuration management with environment validation
"""

from typing import Annotated, List, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict
from functools import lru_cache

from services.hal.registry import DEFAULT_DRIVERS


class Settings(BaseSettings):
    """Application settings with validation"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: str = Field("development", pattern="^(development|staging|production)$")
    debug: bool = Field(False)
    log_level: str = Field("INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    log_to_file: bool = Field(True)
    log_dir: str = Field("logs")

    # API Configuration
    api_host: str = Field("0.0.0.0")
    api_port: int = Field(8080, ge=1024, le=65535)
    cors_origins: Annotated[List[str], NoDecode] = Field(["http://localhost:3000"])

    # Instrument simulation
    default_driver: str = Field("Chemistry")
    poll_interval: float = Field(2.0, gt=0, le=60)
    connect_timeout: float = Field(5.0, gt=0, le=120)
    handshake_delay: Optional[float] = Field(None, ge=0, le=10)  # None: per-driver default
    random_seed: Optional[int] = None
    reject_unknown_commands: bool = Field(False)

    # Text-generation assistant (Gemini)
    gemini_api_key: Optional[str] = None
    gemini_model: str = Field("gemini-2.5-flash")
    gemini_base_url: str = Field("https://generativelanguage.googleapis.com/v1beta")
    assistance_timeout: float = Field(30.0, gt=0, le=300)
    assistance_max_retries: int = Field(3, ge=1, le=10)

    @field_validator("default_driver")
    @classmethod
    def validate_default_driver(cls, v):
        """Ensure the default driver is one the registry builds"""
        if v not in DEFAULT_DRIVERS:
            raise ValueError(
                f"Unknown driver '{v}'. Choose one of: {', '.join(DEFAULT_DRIVERS)}"
            )
        return v

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS origins from comma-separated string or list"""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @field_validator("gemini_api_key")
    @classmethod
    def blank_key_is_unset(cls, v):
        """An empty key means offline mode"""
        if v is not None and not v.strip():
            return None
        return v

    @property
    def assistance_enabled(self) -> bool:
        return self.gemini_api_key is not None


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    try:
        return Settings()
    except Exception as e:
        # Log error and provide helpful message
        import sys
        import logging
        logger = logging.getLogger(__name__)
        logger.error(f"Error loading configuration: {e}")
        logger.error("Check the environment variables (see .env.example):")
        logger.error("- DEFAULT_DRIVER (Chemistry, Immunoassay or Lifotronic)")
        logger.error("- POLL_INTERVAL / CONNECT_TIMEOUT (seconds, > 0)")
        logger.error("- GEMINI_API_KEY (optional; offline mode when unset)")
        sys.exit(1)


# Create settings instance
settings = get_settings()
