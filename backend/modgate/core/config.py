from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    APP_NAME: str = "modgate"
    version: str = "0.1.0"
    DEBUG: bool = False
    APP_DOMAIN: str = "example.com"
    APP_DATABASE_DSN: str = "sqlite:////tmp/modgate.db"
    REDIS_URL: str = "redis://localhost:6379"

    # Billing provider
    stripe_api_key: str = ""
    stripe_webhook_secret: str = ""

    # Bearer tokens issued by the authentication service
    AUTH_JWT_SECRET: str = "change-me"
    AUTH_JWT_AUDIENCE: str = "authenticated"

    # Module rules
    CORE_MODULE_CODE: str = "feedback"
    OWNER_ROLE: str = "master"
    ADMIN_ROLE: str = "admin"
    # {"nps": {"month": "price_...", "year": "price_..."}}
    MODULE_PRICE_IDS: dict[str, dict[str, str]] = {}
    ENTITLEMENT_WRITE_ATTEMPTS: int = 3

    WEBHOOK_EVENT_RETENTION_DAYS: int = 30

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"


settings = Settings()
