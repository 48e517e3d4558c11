from typing import List

from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    # Deployment
    DEPLOYMENT_ENV: str = "prod"  # prod, staging, dev
    DOCKER_BRIDGE_IP: str = ""
    UPDATE_CONTAINER_PORT: str = ""

    # Remote authority
    AUTH_API_TIMEOUT: float = 30

    # Database
    DATABASE_URL: str = "sqlite:///./entitlements.db"

    # Recurring check
    CHECK_POLL_INTERVAL_HOURS: int = 1
    CHECK_ANCHOR_HOUR: int = 3
    CHECK_TIMEZONE: str = "Asia/Tokyo"

    # Requests with these actions never trigger a validation attempt
    LIGHTWEIGHT_ACTIONS: List[str] = ["heartbeat"]

    # Product served by the bundled API service
    PRODUCT_ID: str = ""
    PRODUCT_VERSION: str = "1.0.0"
    PRODUCT_DISPLAY_NAME: str = ""
    SELLERS: List[str] = ["aivec"]
    DEFAULT_PROVIDER: str = "aivec"
    HOST_PLATFORM_VERSION: str = ""

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"

settings = Settings()
