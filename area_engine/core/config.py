from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATABASE_URL: str = "postgresql://area:area@db:5432/area"
    APP_ENV: str = "development"

    # Comma-separated allowed origins, or "*" to allow all.
    # Example: "https://myapp.com,https://api.myapp.com"
    CORS_ORIGINS: str = "*"

    LOG_LEVEL: str = "info"
    # "console" for humans, "json" for log shippers
    LOG_FORMAT: str = "console"

    # Empty string keeps watermarks in process memory (single instance, lost on restart).
    REDIS_URL: str = ""
    # 0 means watermarks never expire.
    WATERMARK_TTL_SECONDS: int = 0
    ACTIVE_BINDING_TTL_SECONDS: int = 86400

    SPOTIFY_POLL_INTERVAL_SECONDS: float = 20.0
    GMAIL_POLL_INTERVAL_SECONDS: float = 5.0
    # INBOX | ALL
    GMAIL_SCOPE_MODE: str = "INBOX"

    DISCORD_BOT_TOKEN: str = ""
    DISCORD_API_BASE: str = "https://discord.com/api/v10"

    HTTP_TIMEOUT_SECONDS: float = 10.0
    RESTORE_ON_STARTUP: bool = True

    @property
    def cors_origins_list(self) -> list[str]:
        if self.CORS_ORIGINS.strip() == "*":
            return ["*"]
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def watermark_ttl(self) -> int | None:
        return self.WATERMARK_TTL_SECONDS or None


settings = Settings()
