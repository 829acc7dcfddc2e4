"""Configuration management for Groundwave."""

from typing import Literal

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from groundwave.errors import ConfigurationError

VALID_ENVIRONMENTS = ("", "development", "dev", "production", "prod")


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Variable names are unprefixed (``DATABASE_URL``, ``CSRF_SECRET``,
    ``GROUNDWAVE_ENV`` ...) so an existing deployment environment keeps working.
    """

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Runtime
    groundwave_env: str = Field(
        default="",
        description="Runtime environment: '', development, dev, production or prod",
    )
    groundwave_base_url: str = Field(
        default="",
        description="Public base URL; links to it are treated as internal",
    )
    port: int = Field(default=8080, description="HTTP listen port")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Storage
    database_url: str = Field(default="", description="PostgreSQL connection URL (required)")
    db_pool_size: int = Field(default=10, description="Connection pool size")
    db_max_overflow: int = Field(default=20, description="Max overflow connections")

    # Security
    csrf_secret: SecretStr = Field(
        default=SecretStr(""),
        description="Secret used to derive per-session CSRF tokens (required)",
    )
    session_lifetime_days: int = Field(
        default=14, ge=1, le=90, description="Absolute session lifetime in days"
    )
    sensitive_access_minutes: int = Field(
        default=10, ge=1, le=120, description="Sensitive access elevation window"
    )
    break_glass_minutes: int = Field(
        default=10, ge=1, le=120, description="Health break-glass window"
    )
    security_contact_url: str = Field(
        default="https://huma.id/.well-known/security.txt",
        description="Target of the security.txt redirect",
    )

    # Rate limiting
    rate_limit_enabled: bool = Field(
        default=True,
        description="Enable rate limiting on authentication endpoints",
    )
    rate_limit_default: str = Field(
        default="100/minute",
        description="Default rate limit (e.g. '100/minute', '1000/hour')",
    )
    rate_limit_storage: str = Field(
        default="memory://",
        description="Rate limit storage backend (memory://, redis://host:port)",
    )

    # WebAuthn
    webauthn_rp_id: str = Field(default="", description="Relying party id (domain)")
    webauthn_rp_origins: str = Field(
        default="", description="Comma separated list of allowed origins"
    )
    webauthn_rp_name: str = Field(default="Groundwave", description="Relying party display name")
    bootstrap_token: SecretStr = Field(
        default=SecretStr(""),
        description="Token required to run the first-admin setup flow",
    )

    # Zettelkasten chat
    ollama_url: str = Field(default="", description="Ollama (OpenAI compatible) base URL")
    ollama_model: str = Field(default="", description="Ollama model name")
    ollama_timeout_seconds: float = Field(default=300.0, description="Chat stream timeout")

    # WhatsApp gateway
    waha_base_url: str = Field(default="", description="WAHA gateway base URL")
    waha_api_key: SecretStr = Field(default=SecretStr(""), description="WAHA API key")
    waha_session_name: str = Field(default="default", description="WAHA session name")
    waha_webhook_key: SecretStr = Field(
        default=SecretStr(""), description="HMAC key WAHA signs webhooks with"
    )
    whatsapp_pairing_timeout_seconds: int = Field(
        default=120, ge=10, description="How long a QR pairing attempt may take"
    )

    # Grid maps
    maps_dir: str = Field(default="maps", description="Directory for rendered grid maps")

    @field_validator("groundwave_env", mode="before")
    @classmethod
    def normalize_env(cls, v: object) -> object:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @model_validator(mode="after")
    def normalize_database_url(self) -> "Settings":
        """Rewrite plain postgres URLs to the asyncpg dialect."""
        url = self.database_url.strip()
        for prefix in ("postgres://", "postgresql://"):
            if url.startswith(prefix):
                url = "postgresql+asyncpg://" + url[len(prefix) :]
                break
        object.__setattr__(self, "database_url", url)
        return self

    @property
    def is_production(self) -> bool:
        return self.groundwave_env in ("production", "prod")

    @property
    def rp_origins(self) -> list[str]:
        """Parsed list of WebAuthn origins."""
        return [o.strip() for o in self.webauthn_rp_origins.split(",") if o.strip()]

    @property
    def whatsapp_enabled(self) -> bool:
        return bool(self.waha_base_url.strip())

    @property
    def chat_enabled(self) -> bool:
        return bool(self.ollama_url.strip() and self.ollama_model.strip())

    def validate_startup(self, *, require_webauthn: bool = True) -> None:
        """Check the settings a serving process cannot run without.

        Raises:
            ConfigurationError: naming the first missing or invalid variable.
        """
        if self.groundwave_env not in VALID_ENVIRONMENTS:
            raise ConfigurationError(
                f"invalid GROUNDWAVE_ENV {self.groundwave_env!r}",
                details={"allowed": [e for e in VALID_ENVIRONMENTS if e]},
            )
        if not self.database_url:
            raise ConfigurationError("DATABASE_URL is required")
        if not self.csrf_secret.get_secret_value():
            raise ConfigurationError("CSRF_SECRET is required")
        if require_webauthn:
            if not self.webauthn_rp_id.strip():
                raise ConfigurationError("WEBAUTHN_RP_ID is required")
            if not self.rp_origins:
                raise ConfigurationError("WEBAUTHN_RP_ORIGINS is required")
        if self.whatsapp_enabled and not self.waha_webhook_key.get_secret_value():
            raise ConfigurationError("WAHA_WEBHOOK_KEY is required when WAHA_BASE_URL is set")


# Global settings instance
settings = Settings()
