"""
Pydantic-based configuration models for the push server.

Every section reads its values from the environment (and an optional
``.env`` file) through pydantic-settings, with one env prefix per section.
"""

from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings

from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


def _default_handlers() -> dict[str, "HandlerEntry"]:
    """Built-in handler providers registered when nothing else is configured."""
    return {
        "comments": HandlerEntry(target="pushserver.handlers.comments:CommentCountHandler"),
        "pages": HandlerEntry(target="pushserver.handlers.pages:PageChangeHandler"),
    }


class HandlerEntry(BaseModel):
    """One handler registration: import target plus its static options."""

    target: str = Field(..., description="Handler provider as 'module.path:ClassName'")
    options: dict[str, Any] = Field(default_factory=dict, description="Static handler configuration")

    @field_validator("target")
    @classmethod
    def validate_target(cls, v: str) -> str:
        """Validate the import target has a module and an attribute part."""
        module_name, _, attr = v.partition(":")
        if not module_name or not attr:
            raise ValueError(f"Handler target must look like 'module.path:ClassName', got '{v}'")
        return v


class ServerConfig(BaseSettings):
    """Listening socket and worker pool configuration."""

    host: str = Field(default="127.0.0.1", description="Server bind address")
    port: int = Field(default=8080, description="Server port")
    worker_count: int = Field(default=4, description="Number of worker processes sharing the socket")
    ssl_enabled: bool = Field(default=False, description="Serve HTTPS instead of HTTP")
    ssl_cert_file: str | None = Field(default=None, description="Path to the TLS certificate")
    ssl_key_file: str | None = Field(default=None, description="Path to the TLS private key")
    graceful_shutdown_timeout: float = Field(
        default=5.0, description="Seconds to wait for open connections to finish on shutdown"
    )

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate port is in valid range."""
        if not 1 <= v <= 65535:
            logger.error("Invalid server port", port=v, valid_range="1-65535")
            raise ValueError("Port must be between 1 and 65535")
        return v

    @field_validator("worker_count")
    @classmethod
    def validate_worker_count(cls, v: int) -> int:
        """A pool needs at least one worker."""
        if v < 1:
            raise ValueError("worker_count must be at least 1")
        return v

    @model_validator(mode="after")
    def validate_ssl(self) -> "ServerConfig":
        """Certificate and key are both required when TLS is enabled."""
        if self.ssl_enabled and (not self.ssl_cert_file or not self.ssl_key_file):
            logger.error(
                "TLS enabled but certificate or key file not provided",
                cert_file=self.ssl_cert_file,
                key_file=self.ssl_key_file,
            )
            raise ValueError("ssl_cert_file and ssl_key_file are required when ssl_enabled is true")
        return self

    model_config = {"env_prefix": "SERVER_", "case_sensitive": False, "extra": "ignore"}


class PushConfig(BaseSettings):
    """Subscription, polling, heartbeat and admission settings."""

    max_connections_per_ip: int = Field(default=10, description="Concurrent streams allowed per client address")
    heartbeat_interval: float = Field(default=30.0, description="Seconds between heartbeat ticks")
    connection_timeout: float = Field(default=300.0, description="Seconds without liveness before eviction")
    check_interval: float = Field(default=2.0, description="Seconds between poll ticks")
    notify_handler: str = Field(default="comments", description="Handler targeted by POST /notify/{route}")
    send_queue_size: int = Field(default=256, description="Buffered frames per connection before sends fail")
    retry_ms: int = Field(default=5000, description="Reconnect hint sent as the first frame of every stream")
    content_root: str = Field(default="user/pages", description="Directory routes are resolved against")
    handlers: dict[str, HandlerEntry] = Field(
        default_factory=_default_handlers, description="Handler providers registered at startup"
    )

    @field_validator("heartbeat_interval", "connection_timeout", "check_interval")
    @classmethod
    def validate_positive_interval(cls, v: float) -> float:
        """Timer intervals must be positive."""
        if v <= 0:
            raise ValueError("Intervals must be greater than zero")
        return v

    @field_validator("max_connections_per_ip", "send_queue_size")
    @classmethod
    def validate_positive_limit(cls, v: int) -> int:
        """Limits must allow at least one item."""
        if v < 1:
            raise ValueError("Limits must be at least 1")
        return v

    @model_validator(mode="after")
    def validate_timeout_exceeds_heartbeat(self) -> "PushConfig":
        """A timeout not above the heartbeat interval would evict every connection."""
        if self.connection_timeout <= self.heartbeat_interval:
            logger.error(
                "Connection timeout must exceed heartbeat interval",
                connection_timeout=self.connection_timeout,
                heartbeat_interval=self.heartbeat_interval,
            )
            raise ValueError("connection_timeout must be strictly greater than heartbeat_interval")
        return self

    model_config = {"env_prefix": "PUSH_", "case_sensitive": False, "extra": "ignore"}


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    environment: str = Field(default="local", description="Logging environment")
    level: str = Field(default="INFO", description="Log level")
    log_base: str = Field(default="logs", description="Base log directory")
    rotation_max_size: str = Field(default="100MB", description="Log rotation max size")
    rotation_backup_count: int = Field(default=5, description="Number of backup log files")
    disable_logging: bool = Field(default=False, description="Disable file logging")

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate logging environment."""
        valid_environments = ["local", "unit_test", "production"]
        if v not in valid_environments:
            logger.error("Invalid logging environment", environment=v, valid_environments=valid_environments)
            raise ValueError(f"Environment must be one of {valid_environments}, got '{v}'")
        return v

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}, got '{v}'")
        return v_upper

    model_config = {"env_prefix": "LOGGING_", "case_sensitive": False, "extra": "ignore"}

    def to_legacy_dict(self) -> dict:
        """Dict form consumed by setup_enhanced_logging."""
        return {
            "environment": self.environment,
            "level": self.level,
            "log_base": self.log_base,
            "rotation": {
                "max_size": self.rotation_max_size,
                "backup_count": self.rotation_backup_count,
            },
            "disable_logging": self.disable_logging,
        }


class CORSConfig(BaseSettings):
    """Cross-origin headers attached to every response."""

    allow_origin: str = Field(default="*", description="Value of Access-Control-Allow-Origin")
    allow_methods: str = Field(default="GET, POST, OPTIONS", description="Value of Access-Control-Allow-Methods")
    allow_headers: str = Field(
        default="Content-Type, Authorization", description="Value of Access-Control-Allow-Headers"
    )

    model_config = {"env_prefix": "CORS_", "case_sensitive": False, "extra": "ignore"}

    def headers(self) -> dict[str, str]:
        return {
            "Access-Control-Allow-Origin": self.allow_origin,
            "Access-Control-Allow-Methods": self.allow_methods,
            "Access-Control-Allow-Headers": self.allow_headers,
        }


class AppConfig(BaseSettings):
    """
    Composite application configuration.

    Aggregates every section. Access via get_config().
    """

    server: ServerConfig = Field(default_factory=ServerConfig)
    push: PushConfig = Field(default_factory=PushConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    cors: CORSConfig = Field(default_factory=CORSConfig)

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "case_sensitive": False, "extra": "ignore"}

    def to_legacy_dict(self) -> dict:
        """Flat dict view, used for logging setup and the config signature."""
        return {
            "host": self.server.host,
            "port": self.server.port,
            "worker_count": self.server.worker_count,
            "ssl_enabled": self.server.ssl_enabled,
            "logging": self.logging.to_legacy_dict(),
            "push": {
                "max_connections_per_ip": self.push.max_connections_per_ip,
                "heartbeat_interval": self.push.heartbeat_interval,
                "connection_timeout": self.push.connection_timeout,
                "check_interval": self.push.check_interval,
                "notify_handler": self.push.notify_handler,
                "handlers": sorted(self.push.handlers),
            },
        }
