from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    redis_url: str = "redis://localhost:6379/0"
    redis_password: str = ""
    # Seconds; bounds how long a new topic can wait on an unreachable Redis.
    redis_connect_timeout: float = 5.0
    environment: str = "development"
    # Clients connect to {events_prefix}/<anything>; the full path is the
    # Redis PSUBSCRIBE pattern.
    events_prefix: str = "/events"
    sse_ping_seconds: int = 15
    client_queue_maxsize: int = 64
    disconnect_poll_seconds: float = 1.0
    # Stored as a comma-separated string to avoid pydantic-settings
    # complex type parsing (json.loads) which fails on plain CSV values.
    cors_origins: str = "*"
    static_dir: str = ""
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"

    @model_validator(mode="after")
    def check_static_dir_reachable(self) -> "Settings":
        if self.static_dir and not self.get_events_prefix():
            raise ValueError(
                "STATIC_DIR needs a non-root EVENTS_PREFIX: "
                "the events route would catch every path."
            )
        return self

    def get_cors_origins(self) -> list[str]:
        return [s.strip() for s in self.cors_origins.split(",") if s.strip()]

    def get_events_prefix(self) -> str:
        prefix = "/" + self.events_prefix.strip("/")
        return "" if prefix == "/" else prefix

    def validate_production(self) -> None:
        if self.environment == "production":
            if "*" in self.get_cors_origins():
                raise ValueError(
                    "CORS_ORIGINS is '*'. "
                    "List the allowed origins explicitly for production."
                )
            for origin in self.get_cors_origins():
                if "localhost" in origin or "127.0.0.1" in origin:
                    raise ValueError(
                        f"CORS origin '{origin}' contains localhost. "
                        "Remove localhost origins in production."
                    )
