# config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv
import os

# Load .env file
load_dotenv()

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Database settings
    DB_HOST: str = os.getenv("DB_HOST", "localhost")
    DB_PORT: int = int(os.getenv("DB_PORT", "5432"))
    DB_USER: str = os.getenv("DB_USER", "")
    DB_PASSWORD: str = os.getenv("DB_PASSWORD", "")
    DB_NAME: str = os.getenv("DB_NAME", "")

    # Storage backend: "auto" probes the database and falls back to memory
    STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "auto")

    # Redis settings
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost")

    # Pool settings
    POOL_MIN_SIZE: int = int(os.getenv("POOL_MIN_SIZE", "2"))
    POOL_MAX_SIZE: int = int(os.getenv("POOL_MAX_SIZE", "8"))
    CONNECTION_TIMEOUT: int = int(os.getenv("CONNECTION_TIMEOUT", "10"))
    COMMAND_TIMEOUT: int = int(os.getenv("COMMAND_TIMEOUT", "30"))

    # API settings
    API_KEY: str = os.getenv("API_KEY", "")
    DEBUG: bool = True
    CLAIM_RATE_LIMIT: int = int(os.getenv("CLAIM_RATE_LIMIT", "20"))  # per minute
    ALLOWED_ORIGINS: str = ""  # Comma-separated list of allowed origins in production

    # Monitoring settings
    TELEGRAM_BOT_TOKEN: str = os.getenv("TELEGRAM_BOT_TOKEN", "")
    TELEGRAM_CHAT_ID: str = os.getenv("TELEGRAM_CHAT_ID", "")

    # Notification settings
    NOTIFICATION_WINDOW: int = int(os.getenv("NOTIFICATION_WINDOW", "300"))  # 5 minutes
    MAX_SIMILAR_NOTIFICATIONS: int = int(os.getenv("MAX_SIMILAR_NOTIFICATIONS", "3"))

    # Health check settings
    HEALTH_CHECK_INTERVAL: int = int(os.getenv("HEALTH_CHECK_INTERVAL", "30"))  # seconds
    MAX_UNHEALTHY_COUNT: int = int(os.getenv("MAX_UNHEALTHY_COUNT", "3"))

    # Supply and halving
    REWARD_ASSET: str = os.getenv("REWARD_ASSET", "GBTC")
    MAX_SUPPLY: str = os.getenv("MAX_SUPPLY", "2100000")
    INITIAL_BLOCK_REWARD: str = os.getenv("INITIAL_BLOCK_REWARD", "50")
    HALVING_INTERVAL: int = int(os.getenv("HALVING_INTERVAL", "4200"))

    # Block production
    BLOCK_PERIOD_SECONDS: int = int(os.getenv("BLOCK_PERIOD_SECONDS", "86400"))  # one block per UTC day
    SCHEDULER_ENABLED: bool = os.getenv("SCHEDULER_ENABLED", "true").lower() == "true"
    SCHEDULER_POLL_INTERVAL: int = int(os.getenv("SCHEDULER_POLL_INTERVAL", "30"))  # seconds
    SCHEDULER_RETRY_MAX_TIME: int = int(os.getenv("SCHEDULER_RETRY_MAX_TIME", "60"))  # seconds

    # Claims and activity
    CLAIM_WINDOW_HOURS: int = int(os.getenv("CLAIM_WINDOW_HOURS", "24"))
    INACTIVITY_WINDOW_HOURS: int = int(os.getenv("INACTIVITY_WINDOW_HOURS", "48"))
    DUST_THRESHOLD_UNITS: int = int(os.getenv("DUST_THRESHOLD_UNITS", "1"))

    # Staking
    STAKE_ASSET: str = os.getenv("STAKE_ASSET", "BTC")
    APR_CURVE: str = os.getenv("APR_CURVE", "linear")  # "linear" or "tiered"
    MIN_STAKE_AMOUNT: str = os.getenv("MIN_STAKE_AMOUNT", "0.1")
    STAKE_AUTO_MATURE: bool = os.getenv("STAKE_AUTO_MATURE", "false").lower() == "true"

    # Price oracle
    PRICE_SOURCE: str = os.getenv("PRICE_SOURCE", "coingecko")  # "coingecko" or "static"
    PRICE_API_URL: str = os.getenv(
        "PRICE_API_URL",
        "https://api.coingecko.com/api/v3/simple/price",
    )
    PRICE_CACHE_TTL: int = int(os.getenv("PRICE_CACHE_TTL", "30"))  # seconds
    PRICE_API_TIMEOUT: int = int(os.getenv("PRICE_API_TIMEOUT", "5"))
    PRICE_API_RETRY_COUNT: int = int(os.getenv("PRICE_API_RETRY_COUNT", "3"))
    PRICE_FALLBACK: str = os.getenv("PRICE_FALLBACK", "98000.00")

# Create settings instance
settings = Settings()
