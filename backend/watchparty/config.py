import secrets
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from pydantic import field_validator
import sys


class Settings(BaseSettings):
    # App
    APP_NAME: str = "Watch Party"
    DEBUG: bool = False
    API_PREFIX: str = "/api/v1"

    # Logging
    LOG_LEVEL: str = "INFO"  # TRACE, DEBUG, INFO, SUCCESS, WARNING, ERROR, CRITICAL
    LOG_JSON: bool = False  # Set True for JSON logging in production
    LOG_TO_FILE: bool = True
    LOG_DIR: str = "logs"

    # Room state store
    STATE_BACKEND: str = "redis"  # redis | memory
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_SOCKET_TIMEOUT: float = 5.0
    REDIS_KEY_PREFIX: str = ""

    # JWT
    # JWT_SECRET must be set in production, DEBUG=True allows a generated one
    JWT_SECRET: str = ""
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7

    # CORS
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # Room Settings
    ROOM_TTL_SECONDS: int = 60  # Inactive rooms vanish after this window
    DEFAULT_MAX_PARTICIPANTS: int = 10
    MIN_PARTICIPANTS: int = 2
    MAX_PARTICIPANTS: int = 50

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    @field_validator("STATE_BACKEND")
    @classmethod
    def validate_state_backend(cls, v: str) -> str:
        value = v.strip().lower()
        if value not in ("redis", "memory"):
            raise ValueError(f"STATE_BACKEND must be 'redis' or 'memory', got {v!r}")
        return value

    @field_validator("JWT_SECRET")
    @classmethod
    def validate_jwt_secret(cls, v: str, info) -> str:
        """Validate JWT_SECRET is set in production environments."""
        # DEBUG is declared before JWT_SECRET so it is already in info.data
        debug_mode = False
        try:
            debug_mode = info.data.get("DEBUG", False)
        except (AttributeError, KeyError):
            pass

        if not v:
            if not debug_mode:
                raise ValueError(
                    "CRITICAL SECURITY ERROR: JWT_SECRET environment variable must be set "
                    "with a strong, unique value in production mode. "
                    "\nGenerate a secure key with: python -c 'import secrets; print(secrets.token_urlsafe(32))' "
                    "\nThen set it in your .env file: JWT_SECRET=<generated-key>"
                )
            import warnings
            fallback_key = secrets.token_urlsafe(32)
            warnings.warn(
                "JWT_SECRET not set, using an auto-generated development key. "
                "Tokens will not survive a restart.",
                RuntimeWarning,
                stacklevel=2
            )
            return fallback_key
        if len(v) < 32:
            import warnings
            warnings.warn(
                f"JWT_SECRET is too short ({len(v)} chars). Minimum 32 characters recommended for security.",
                RuntimeWarning,
                stacklevel=2
            )
        return v

    def get_cors_origins(self) -> list[str]:
        return [origin.rstrip("/") for origin in self.CORS_ORIGINS]


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Exits the process if configuration is invalid.
    """
    try:
        return Settings()
    except Exception as e:
        print(f"\n{'='*70}")
        print(f"CONFIGURATION ERROR: {e}")
        print(f"{'='*70}\n")
        sys.exit(1)


settings = get_settings()
