from typing import Optional
from urllib.parse import urlparse

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_LOCAL_ENVIRONMENTS = {"development", "dev", "local", "test"}


class Settings(BaseSettings):
    # Runtime environment
    environment: str = "development"

    # Profile store database
    database_url: Optional[str] = None
    database_hostname: str = "localhost"
    database_port: int = 5432
    database_password: str = "password123"
    database_name: str = "teamdock"
    database_username: str = "postgres"

    # API versioning
    api_latest_version: str = "v1"

    # Discord OAuth
    discord_client_id: Optional[str] = None
    discord_client_secret: Optional[str] = None
    discord_api_base_url: str = "https://discord.com/api/v10"
    discord_authorize_url: str = "https://discord.com/api/oauth2/authorize"
    discord_cdn_base_url: str = "https://cdn.discordapp.com"
    discord_scopes: list[str] = ["identify", "email"]
    discord_prompt: Optional[str] = "none"
    discord_timeout_seconds: float = 10.0

    # Public origin used for redirects and the OAuth callback address
    public_base_url: Optional[str] = None

    # Session cookie
    session_cookie_name: str = "discord_session"
    session_max_age_seconds: int = 60 * 60 * 24 * 30

    # Optional feature packs (enabled by default)
    enable_optional_rate_limiting: bool = True
    enable_optional_observability: bool = True

    # Rate limiting / Redis
    redis_url: str = "redis://localhost:6379/0"
    rate_limit_enabled: bool = True
    rate_limit_fail_open: bool = False
    rate_limit_login_limit: int = 10
    rate_limit_login_window_seconds: int = 60
    rate_limit_signup_limit: int = 5
    rate_limit_signup_window_seconds: int = 60
    rate_limit_oauth_limit: int = 30
    rate_limit_oauth_window_seconds: int = 60

    # Readiness checks
    redis_health_required: bool = False

    # Observability
    metrics_enabled: bool = True
    sentry_dsn: Optional[str] = None
    sentry_environment: str = "development"
    sentry_traces_sample_rate: float = 0.0

    # Request security controls
    trust_proxy_headers: bool = False
    trusted_hosts: list[str] = ["localhost", "127.0.0.1", "testserver"]
    security_headers_enabled: bool = True
    security_csp_enabled: bool = True
    security_hsts_enabled: bool = False
    security_hsts_max_age_seconds: int = 31_536_000
    security_https_redirect: bool = False

    # CORS
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def is_local_environment(self) -> bool:
        return self.environment.strip().lower() in _LOCAL_ENVIRONMENTS

    @property
    def sqlalchemy_database_url(self) -> str:
        if self.database_url:
            # psycopg2 is the installed driver; a bare scheme resolves to psycopg 3.
            if self.database_url.startswith("postgresql://"):
                return "postgresql+psycopg2://" + self.database_url[len("postgresql://"):]
            return self.database_url
        return (
            f"postgresql+psycopg2://{self.database_username}:{self.database_password}"
            f"@{self.database_hostname}:{self.database_port}/{self.database_name}"
        )

    @field_validator("public_base_url")
    @classmethod
    def validate_public_base_url(cls, value: Optional[str]) -> Optional[str]:
        if not value:
            return None
        parsed = urlparse(value)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError("PUBLIC_BASE_URL must be an absolute http/https URL")
        if parsed.path.strip("/") or parsed.query or parsed.fragment:
            raise ValueError("PUBLIC_BASE_URL must be an origin without path or query")
        return value.rstrip("/")

    @field_validator("session_max_age_seconds")
    @classmethod
    def validate_session_max_age(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("SESSION_MAX_AGE_SECONDS must be positive")
        return value

    @model_validator(mode="after")
    def validate_production_discord_credentials(self) -> "Settings":
        if self.environment.lower() in {"prod", "production"}:
            if self.discord_client_id and not self.discord_client_secret:
                raise ValueError(
                    "DISCORD_CLIENT_SECRET must be set when DISCORD_CLIENT_ID is configured"
                )
        return self


settings = Settings()
