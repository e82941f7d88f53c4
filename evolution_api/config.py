"""Configuration model: one explicit object handed to every component.

Values come from a JSON file (written by ``evolution-api install``) and
``EVOLUTION_*`` environment variables, in that order.
"""

from __future__ import annotations

import json
import os
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from evolution_api.exceptions import ConfigurationError

DEFAULT_CONFIG_PATH = "config/evolution-api.json"


class ConnectionConfig(BaseModel):
    server_url: str = "http://localhost:8080"
    api_key: str | None = None

    @field_validator("server_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


class HttpConfig(BaseModel):
    timeout: float = 30.0
    connect_timeout: float = 10.0
    verify_ssl: bool = True


class RetryConfig(BaseModel):
    enabled: bool = True
    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = 1.0  # seconds
    max_delay: float = 30.0
    retryable_status_codes: list[int] = Field(
        default_factory=lambda: [408, 429, 500, 502, 503, 504],
    )


class RateLimit(BaseModel):
    max_attempts: int = Field(ge=1)
    decay_seconds: int = Field(ge=1)


class RateLimitingConfig(BaseModel):
    enabled: bool = True
    limits: dict[str, RateLimit] = Field(default_factory=lambda: {
        "default": RateLimit(max_attempts=60, decay_seconds=60),
        "messages": RateLimit(max_attempts=30, decay_seconds=60),
        "media": RateLimit(max_attempts=10, decay_seconds=60),
    })
    on_limit_reached: Literal["wait", "throw"] = "wait"


class WebhookConfig(BaseModel):
    path: str = "/api/evolution-api/webhook"
    verify_signature: bool = True
    secret: str | None = None
    queue: bool = False

    @field_validator("path")
    @classmethod
    def _normalize_path(cls, value: str) -> str:
        return "/" + value.strip("/")


class QueueConfig(BaseModel):
    driver: Literal["celery", "sync"] = "sync"
    connection: str | None = None  # Celery broker URL
    queue: str = "evolution-api"
    webhook_queue: str = "default"
    max_exceptions: int = Field(default=3, ge=1)
    backoff: list[int] = Field(default_factory=lambda: [60, 300, 900])

    @field_validator("backoff")
    @classmethod
    def _backoff_not_empty(cls, value: list[int]) -> list[int]:
        if not value:
            raise ValueError("backoff schedule must contain at least one duration")
        if any(v < 0 for v in value):
            raise ValueError("backoff durations must be non-negative")
        return value


class DatabaseConfig(BaseModel):
    path: str = "data/evolution-api.db"
    store_messages: bool = True
    store_webhooks: bool = True
    prune_after_days: int = Field(default=30, ge=0)


class LoggingConfig(BaseModel):
    level: str = "INFO"
    json_format: bool = Field(default=False, alias="json")
    redact_sensitive: bool = True
    sensitive_fields: list[str] = Field(
        default_factory=lambda: ["apikey", "api_key", "token", "password", "secret"],
    )

    model_config = ConfigDict(populate_by_name=True)


class AuditConfig(BaseModel):
    log_path: str | None = None
    max_bytes: int = 10_485_760
    backup_count: int = 5


class EvolutionConfig(BaseModel):
    server_url: str = "http://localhost:8080"
    api_key: str | None = None
    default_instance: str | None = None
    connections: dict[str, ConnectionConfig] = Field(default_factory=dict)
    http: HttpConfig = Field(default_factory=HttpConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    rate_limiting: RateLimitingConfig = Field(default_factory=RateLimitingConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)

    def connection(self, name: str | None = None) -> ConnectionConfig:
        """Resolve a named connection; ``default`` falls back to top-level keys."""
        name = name or "default"
        if name in self.connections:
            return self.connections[name]
        if name == "default":
            return ConnectionConfig(server_url=self.server_url, api_key=self.api_key)
        raise ConfigurationError(f"Connection '{name}' is not configured")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> EvolutionConfig:
        try:
            return cls.model_validate(dict(data))
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid configuration: {exc}") from exc

    @classmethod
    def load(cls, path: str | os.PathLike[str]) -> EvolutionConfig:
        """Load configuration from a JSON file."""
        try:
            data = json.loads(Path(path).read_text())
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Config file {path} is not valid JSON: {exc}") from exc
        return cls.from_mapping(data)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> EvolutionConfig:
        """Build configuration from ``EVOLUTION_CONFIG_PATH`` plus env overrides."""
        env = os.environ if environ is None else environ
        data: dict[str, Any] = {}
        config_path = env.get("EVOLUTION_CONFIG_PATH")
        if config_path is None and Path(DEFAULT_CONFIG_PATH).exists():
            config_path = DEFAULT_CONFIG_PATH
        if config_path:
            try:
                data = json.loads(Path(config_path).read_text())
            except (OSError, json.JSONDecodeError) as exc:
                raise ConfigurationError(
                    f"Cannot read config file {config_path}: {exc}",
                ) from exc

        for var, dotted, cast in _ENV_OVERRIDES:
            if var in env and env[var] != "":
                _set_dotted(data, dotted, cast(env[var]))
        return cls.from_mapping(data)


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _as_int_list(value: str) -> list[int]:
    return [int(part) for part in value.split(",") if part.strip()]


def _set_dotted(data: dict[str, Any], dotted: str, value: Any) -> None:
    *parents, leaf = dotted.split(".")
    node = data
    for key in parents:
        node = node.setdefault(key, {})
    node[leaf] = value


_ENV_OVERRIDES: list[tuple[str, str, Callable[[str], Any]]] = [
    ("EVOLUTION_API_URL", "server_url", str),
    ("EVOLUTION_API_KEY", "api_key", str),
    ("EVOLUTION_DEFAULT_INSTANCE", "default_instance", str),
    ("EVOLUTION_HTTP_TIMEOUT", "http.timeout", float),
    ("EVOLUTION_VERIFY_SSL", "http.verify_ssl", _as_bool),
    ("EVOLUTION_VERIFY_WEBHOOK", "webhook.verify_signature", _as_bool),
    ("EVOLUTION_WEBHOOK_SECRET", "webhook.secret", str),
    ("EVOLUTION_WEBHOOK_QUEUE", "webhook.queue", _as_bool),
    ("EVOLUTION_WEBHOOK_PATH", "webhook.path", str),
    ("EVOLUTION_QUEUE_DRIVER", "queue.driver", str),
    ("EVOLUTION_QUEUE_CONNECTION", "queue.connection", str),
    ("EVOLUTION_QUEUE_NAME", "queue.queue", str),
    ("EVOLUTION_QUEUE_MAX_EXCEPTIONS", "queue.max_exceptions", int),
    ("EVOLUTION_QUEUE_BACKOFF", "queue.backoff", _as_int_list),
    ("EVOLUTION_DB_PATH", "database.path", str),
    ("EVOLUTION_PRUNE_DAYS", "database.prune_after_days", int),
    ("EVOLUTION_LOG_LEVEL", "logging.level", str),
    ("EVOLUTION_LOG_JSON", "logging.json", _as_bool),
    ("EVOLUTION_AUDIT_LOG_PATH", "audit.log_path", str),
]
