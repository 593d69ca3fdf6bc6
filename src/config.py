"""
Configuration module for the GraphQL reconciler.

Loads configuration from environment variables. The server section describes
where and how queries are sent, the retry section holds the default execution
policy, and the state section selects where resource state is persisted.
"""

import json
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from errors import ConfigurationError

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_MS = 100


def _json_object_from_env(name: str) -> Dict[str, str]:
    """Parse a JSON object of header name -> value from an environment variable."""
    raw = os.getenv(name, "")
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"{name} must be a JSON object: {e}")
    if not isinstance(value, dict):
        raise ConfigurationError(f"{name} must be a JSON object")
    return {str(k): str(v) for k, v in value.items()}


@dataclass
class ServerConfig:
    """GraphQL endpoint configuration."""

    url: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    # Never log authorization headers
    authorization_headers: Dict[str, str] = field(default_factory=dict, repr=False)
    request_timeout: Optional[float] = None  # seconds, None = no timeout

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        timeout = os.getenv("GRAPHQL_REQUEST_TIMEOUT", "")
        return cls(
            url=os.getenv("GRAPHQL_URL", ""),
            headers=_json_object_from_env("GRAPHQL_HEADERS"),
            authorization_headers=_json_object_from_env(
                "GRAPHQL_AUTHORIZATION_HEADERS"
            ),
            request_timeout=float(timeout) if timeout else None,
        )


@dataclass
class RetryConfig:
    """Default execution policy for the query executor."""

    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS
    # Empty = use the executor's default retryable status codes
    retry_status_codes: List[int] = field(default_factory=list)

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        codes_str = os.getenv("GRAPHQL_RETRY_STATUS_CODES", "")
        codes = (
            [int(c.strip()) for c in codes_str.split(",") if c.strip()]
            if codes_str
            else []
        )
        return cls(
            max_retries=int(
                os.getenv("GRAPHQL_MAX_RETRIES", str(DEFAULT_MAX_RETRIES))
            ),
            retry_delay_ms=int(
                os.getenv("GRAPHQL_RETRY_DELAY_MS", str(DEFAULT_RETRY_DELAY_MS))
            ),
            retry_status_codes=codes,
        )


@dataclass
class DatabaseConfig:
    """PostgreSQL configuration for the postgres state backend."""

    host: str = "localhost"
    port: int = 5432
    database: str = "graphql_reconciler"
    user: str = "reconciler"
    password: str = field(default="", repr=False)  # Never log password
    min_pool_size: int = 1
    max_pool_size: int = 5

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        password = os.getenv("STATE_DB_PASSWORD", "")
        if not password:
            raise ValueError(
                "STATE_DB_PASSWORD environment variable must be set. "
                "Database password cannot be empty."
            )

        return cls(
            host=os.getenv("STATE_DB_HOST", "localhost"),
            port=int(os.getenv("STATE_DB_PORT", "5432")),
            database=os.getenv("STATE_DB_NAME", "graphql_reconciler"),
            user=os.getenv("STATE_DB_USER", "reconciler"),
            password=password,
            min_pool_size=int(os.getenv("STATE_DB_MIN_POOL_SIZE", "1")),
            max_pool_size=int(os.getenv("STATE_DB_MAX_POOL_SIZE", "5")),
        )


@dataclass
class StateConfig:
    """Where resource state is persisted."""

    backend: str = "file"  # "file" or "postgres"
    path: str = "graphql-state.json"
    database: DatabaseConfig = field(default_factory=DatabaseConfig)

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        backend = os.getenv("STATE_BACKEND", "file").lower()
        if backend not in ("file", "postgres"):
            raise ValueError(
                f"STATE_BACKEND must be 'file' or 'postgres', got '{backend}'"
            )
        # Only the postgres backend needs database credentials
        database = (
            DatabaseConfig.from_env() if backend == "postgres" else DatabaseConfig()
        )
        return cls(
            backend=backend,
            path=os.getenv("STATE_FILE", "graphql-state.json"),
            database=database,
        )


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(level=os.getenv("LOG_LEVEL", "INFO").upper())


@dataclass
class Config:
    """Main configuration object."""

    server: ServerConfig
    retry: RetryConfig
    state: StateConfig
    logging: LoggingConfig

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        return cls(
            server=ServerConfig.from_env(),
            retry=RetryConfig.from_env(),
            state=StateConfig.from_env(),
            logging=LoggingConfig.from_env(),
        )

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls(
            server=ServerConfig(),
            retry=RetryConfig(),
            state=StateConfig(),
            logging=LoggingConfig(),
        )


# Global config instance
config: Optional[Config] = None


def load_config() -> Config:
    """Load configuration (singleton pattern)."""
    global config
    if config is None:
        config = Config.from_env()
    return config


def get_config() -> Config:
    """Get the current configuration."""
    if config is None:
        return load_config()
    return config


def reset_config() -> None:
    """Reset configuration (mainly for testing)."""
    global config
    config = None
