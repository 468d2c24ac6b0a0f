from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Loading priority (highest to lowest):
    1. Environment variables
    2. .env file
    3. Default values below
    """

    # Environment
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # Application
    app_name: str = "SnapURL"
    app_version: str = "1.0.0"

    # Server
    host: str = "127.0.0.1"
    port: int = 8000

    # Database
    database_url: str = "sqlite:///./snapurl.db"

    # Links
    base_url: str = "http://127.0.0.1:8000"
    max_url_length: int = 2048
    allow_custom_alias: bool = True
    max_links_per_owner: int = 20  # Active links per owner

    # Short code generation strategy
    short_code_strategy: str = "random"  # Options: "random", "base62"
    short_code_length: int = 7
    short_code_max_attempts: int = 10
    short_code_salt: int = 916132  # Salt for Base62 strategy

    # Click classification
    unique_click_window_hours: int = 24  # 0 = unique per IP forever

    # Cache settings
    cache_backend: str = "memory"  # Options: "redis", "memory", "null"
    redis_url: str = "redis://localhost:6379/0"
    cache_ttl: int = 3600  # Cache TTL in seconds (1 hour)
    cache_max_entries: int = 10000  # In-memory backend only

    # Queue settings
    queue_backend: str = "memory"  # Options: "redis_streams", "memory"
    queue_name: str = "link_clicks"
    queue_consumer_group: str = "click_workers"
    queue_batch_size: int = 100  # Number of messages to process at once
    queue_block_ms: int = 1000
    click_worker_embedded: bool = True  # Run the click worker inside the API process

    # Geo lookup settings
    geo_backend: str = "null"  # Options: "null", "ip_api"
    geo_ip_api_url: str = "http://ip-api.com/json"
    geo_timeout_seconds: float = 1.5

    # Analytics bounds
    analytics_max_group_size: int = 50
    analytics_max_buckets: int = 1000
    realtime_max_minutes: int = 1440
    default_retention_days: int = 365

    # Privileged endpoints (platform analytics, cleanup)
    admin_token: str = "change-me-admin-token"

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


# Create settings instance
settings = Settings()
