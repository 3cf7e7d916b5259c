"""Application settings and configuration.

This module defines all configuration options for the Cloak Courier service.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Cloak Courier", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="text", alias="LOG_FORMAT")

    # Server
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=3100, alias="PORT")

    # Database configuration
    database_url: str = Field(default="sqlite:///./cloak_courier.db", alias="DATABASE_URL")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")
    auto_create_tables: bool = Field(default=True, alias="AUTO_CREATE_TABLES")

    # Public surface
    public_base_url: str = Field(default="http://localhost:3100", alias="PUBLIC_BASE_URL")
    service_api_key: str | None = Field(default=None, alias="SERVICE_API_KEY")

    # Ledger JSON API
    ledger_api_version: str = Field(default="v1", alias="LEDGER_API_VERSION")
    ledger_json_api_url: str = Field(default="http://localhost:7575", alias="LEDGER_JSON_API_URL")
    ledger_viewer_base_url: str = Field(
        default="http://localhost:7575",
        alias="LEDGER_VIEWER_BASE_URL",
    )
    ledger_package_name: str = Field(
        default="confidential-connect",
        alias="LEDGER_PACKAGE_NAME",
    )
    ledger_package_version: str = Field(default="0.1.0", alias="LEDGER_PACKAGE_VERSION")
    ledger_dar_path: str | None = Field(default=None, alias="LEDGER_DAR_PATH")
    ledger_application_id: str = Field(
        default="confidential-connect",
        alias="LEDGER_APPLICATION_ID",
    )
    ledger_id: str = Field(default="sandbox", alias="LEDGER_ID")
    ledger_jwt_secret: str = Field(default="sandbox-secret", alias="LEDGER_JWT_SECRET")
    ledger_jwt_algorithm: str = Field(default="HS256", alias="LEDGER_JWT_ALGORITHM")
    ledger_auth_token: str | None = Field(default=None, alias="LEDGER_AUTH_TOKEN")
    ledger_token_ttl_seconds: int = Field(
        default=60 * 60 * 24,
        alias="LEDGER_TOKEN_TTL_SECONDS",
    )
    ledger_http_timeout_seconds: float = Field(
        default=10.0,
        alias="LEDGER_HTTP_TIMEOUT_SECONDS",
    )
    ledger_bootstrap_on_startup: bool = Field(
        default=True,
        alias="LEDGER_BOOTSTRAP_ON_STARTUP",
    )
    operator_identity_hint: str = Field(default="operator", alias="OPERATOR_IDENTITY_HINT")

    # Token lifecycle
    send_token_ttl_seconds: int = Field(default=10 * 60, alias="SEND_TOKEN_TTL_SECONDS")
    viewer_credential_ttl_seconds: int = Field(
        default=60,
        alias="VIEWER_CREDENTIAL_TTL_SECONDS",
    )
    token_retention_hours: int = Field(default=24, alias="TOKEN_RETENTION_HOURS")
    token_sweep_interval_seconds: float = Field(
        default=60 * 60,
        alias="TOKEN_SWEEP_INTERVAL_SECONDS",
    )
    max_ttl_seconds: int = Field(default=7 * 24 * 60 * 60, alias="MAX_TTL_SECONDS")

    # Link preview crawlers must never consume a one-time token
    preview_agent_patterns: list[str] = Field(
        default=[
            "Slackbot",
            "facebookexternalhit",
            "Twitterbot",
            "Discordbot",
            "TelegramBot",
            "WhatsApp",
            "LinkedInBot",
        ],
        alias="PREVIEW_AGENT_PATTERNS",
    )

    # Notifier
    notifier_backend: str = Field(default="log", alias="NOTIFIER_BACKEND")
    slack_bot_token: str | None = Field(default=None, alias="SLACK_BOT_TOKEN")

    # CORS configuration for the compose page
    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")
    cors_allow_methods: list[str] = Field(default=["GET", "POST"], alias="CORS_ALLOW_METHODS")
    cors_allow_headers: list[str] = Field(default=["*"], alias="CORS_ALLOW_HEADERS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for tooling such as Alembic."""
        url = self.database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        return url

    @property
    def ttl_choices(self) -> list[int | None]:
        """Return the expiration choices offered on the compose form."""
        choices: list[int | None] = [None]
        choices.extend(
            seconds
            for seconds in (30, 300, 3600, 86_400, 604_800)
            if seconds <= self.max_ttl_seconds
        )
        return choices


settings = Settings()
