from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .logger import get_logger


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = Field("dev", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    admin_token: str = Field("", alias="ADMIN_TOKEN")

    odds_feed_base: str = Field("https://www.sportybet.com/api/ng", alias="ODDS_FEED_BASE")
    odds_feed_cookie: str = Field("", alias="ODDS_FEED_COOKIE")
    odds_feed_sport_id: str = Field("sr:sport:1", alias="ODDS_FEED_SPORT_ID")
    upcoming_page_size: int = Field(default=100, alias="UPCOMING_PAGE_SIZE")
    upcoming_page_limit: int = Field(default=9, alias="UPCOMING_PAGE_LIMIT")
    upcoming_concurrency: int = Field(default=3, alias="UPCOMING_CONCURRENCY")

    stats_base: str = Field("https://lmt.fn.sportradar.com/common/en/Etc:UTC/gismo", alias="STATS_BASE")
    stats_token: str = Field("", alias="STATS_TOKEN")
    stats_origin: str = Field("https://www.sportybet.com", alias="STATS_ORIGIN")

    redis_url: str = Field("redis://localhost:6379/0", alias="REDIS_URL")
    snapshot_ttl_seconds: int = Field(default=48 * 3600, alias="SNAPSHOT_TTL_SECONDS")

    queue_window_size: int = Field(default=3, alias="QUEUE_WINDOW_SIZE")
    queue_request_timeout_ms: int = Field(default=3000, alias="QUEUE_REQUEST_TIMEOUT_MS")
    queue_window_pause_ms: int = Field(default=100, alias="QUEUE_WINDOW_PAUSE_MS")

    live_driver: str = Field("polling", alias="LIVE_DRIVER")
    live_refresh_ms: int = Field(default=1000, alias="LIVE_REFRESH_MS")
    upcoming_refresh_ms: int = Field(default=60000, alias="UPCOMING_REFRESH_MS")
    finished_minutes: int = Field(default=90, alias="FINISHED_MINUTES")
    simulated_league_marker: str = Field("srl", alias="SIMULATED_LEAGUE_MARKER")
    recommendation_threshold: float = Field(default=65, alias="RECOMMENDATION_THRESHOLD")

    live_feed_url: str = Field("ws://localhost:5000/livematchhub", alias="LIVE_FEED_URL")
    live_feed_heartbeat_ms: int = Field(default=5000, alias="LIVE_FEED_HEARTBEAT_MS")
    live_feed_client_timeout_ms: int = Field(default=45000, alias="LIVE_FEED_CLIENT_TIMEOUT_MS")
    live_feed_backoff_base_ms: int = Field(default=1000, alias="LIVE_FEED_BACKOFF_BASE_MS")
    live_feed_backoff_max_ms: int = Field(default=30000, alias="LIVE_FEED_BACKOFF_MAX_MS")
    live_feed_max_attempts: int = Field(default=5, alias="LIVE_FEED_MAX_ATTEMPTS")
    live_feed_client_id_file: str = Field(".livematch_client.json", alias="LIVE_FEED_CLIENT_ID_FILE")
    client_id_ttl_hours: int = Field(default=24, alias="CLIENT_ID_TTL_HOURS")

    snapshot_cron: str = Field("0 */6 * * *", alias="SNAPSHOT_CRON")
    scheduler_enabled: bool = Field(default=True, alias="SCHEDULER_ENABLED")

    @model_validator(mode="after")
    def validate_stats_token(self):
        if not (self.stats_token or "").strip():
            logger = get_logger("settings")
            logger.warning("STATS_TOKEN is not configured; stats provider calls will likely be rejected")
        return self

    @property
    def use_push_driver(self) -> bool:
        return (self.live_driver or "").strip().lower() == "push"

    @property
    def live_refresh_seconds(self) -> float:
        return max(self.live_refresh_ms, 1) / 1000

    @property
    def upcoming_refresh_seconds(self) -> float:
        return max(self.upcoming_refresh_ms, 1) / 1000


default_settings = Settings()
settings = default_settings
