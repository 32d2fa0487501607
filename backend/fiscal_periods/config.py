from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    database_url: str = "sqlite+aiosqlite:///./data/fiscal_periods.db"

    # Auth (tokens are issued by the identity provider, only verified here)
    secret_key: str = "dev-secret-change-in-production"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 30

    # Server
    host: str = "127.0.0.1"
    port: int = 8000
    cors_origins: list[str] = ["http://localhost:5173"]

    # Calendar used to decide which monthly period is "current"
    timezone: str = "UTC"

    @property
    def is_sqlite(self) -> bool:
        return "sqlite" in self.database_url
