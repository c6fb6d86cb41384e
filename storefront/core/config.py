"""Application configuration loaded from environment variables."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Typed settings exposed via dependency injection throughout the app."""

    # Read .env with BOM tolerance; case-sensitive keys
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8-sig",
        case_sensitive=True,
    )

    APP_NAME: str = "Storefront API"
    ENV: str = "dev"  # dev | staging | prod
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True  # false for human-readable local logs
    SERVER_HOST: str = "127.0.0.1"
    SERVER_PORT: int = 8000

    # JWT
    SECRET_KEY: str  # set via env/.env
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    JWT_ISSUER: str = "storefront-api"
    JWT_AUDIENCE: str = "storefront-clients"

    # CORS
    CORS_ALLOWED_ORIGINS: list[str] = Field(default_factory=list)

    # DB
    DB_HOST: str = "127.0.0.1"
    DB_PORT: int = 3306
    DB_USER: str = "storefront"
    DB_PASSWORD: str = ""  # set via env/.env
    DB_NAME: str = "storefront"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 3600
    DB_ISOLATION_LEVEL: str = "READ COMMITTED"
    DB_RETRY_ATTEMPTS: int = 4
    DB_RETRY_BASE_DELAY: float = 0.05
    DB_RETRY_JITTER: float = 0.025
    INNODB_LOCK_WAIT_TIMEOUT_SEC: int = 10
    SELECT_MAX_EXECUTION_TIME_MS: int = 5000
    DB_NOWAIT_LOCKS: bool = False

    SECURITY_MAX_CONCURRENCY: int = 4
    MAX_UPLOAD_BYTES: int = 1 * 1024 * 1024  # 1 MB of JSON is plenty

    # Rate limits (slowapi syntax)
    LOGIN_RATE: str = "50/15minutes"
    ORDER_CREATE_RATE: str = "20/minute"

    # IP geolocation (ip-api.com compatible)
    GEOIP_URL: str = "http://ip-api.com/json/{ip}"
    GEOIP_FIELDS: str = "status,message,country,regionName,city,lat,lon"
    GEOIP_TIMEOUT_SEC: float = 5.0
    GEOIP_MAX_CONCURRENCY: int = 8

    # Location used for private, loopback and link-local callers
    FALLBACK_LATITUDE: float = 24.7136
    FALLBACK_LONGITUDE: float = 46.6753
    FALLBACK_CITY: str = "Riyadh"
    FALLBACK_COUNTRY: str = "Saudi Arabia"
    FALLBACK_REGION: str = "Riyadh Region"

    # Branch search radii in kilometres
    BRANCH_SEARCH_RADIUS_KM: float = 50.0
    ORDER_BRANCH_MAX_DISTANCE_KM: float = 10000.0
    IP_BRANCH_MAX_DISTANCE_KM: float = 100.0

    # Offer resolution
    RESOLVE_USE_IP_LOOKUP: bool = True

    # Checkout
    PRICE_TOLERANCE: float = 0.01
    ORDER_NUMBER_PREFIX: str = "MTC"

    @property
    def DATABASE_URL(self) -> str:
        return (
            f"mysql+aiomysql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}?charset=utf8mb4"
        )


settings = Settings()
