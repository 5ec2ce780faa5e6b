"""Configuration loading from environment variables."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from serverwatch.types import StoreBackend

# Valid log levels
VALID_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})

# Steam Web API endpoint listing game servers registered with the master directory
DEFAULT_DIRECTORY_URL = "https://api.steampowered.com/IGameServersService/GetServerList/v1/"

# Counter-Strike 2 (AppID 730)
DEFAULT_DIRECTORY_FILTER = "\\appid\\730"

DEFAULT_DB_PATH = Path("./data/serverwatch.db")


@dataclass(frozen=True)
class PollingConfig:
    """Discovery cadence and master directory settings."""

    interval_seconds: int = 300
    batch_size: int = 100
    directory_url: str = DEFAULT_DIRECTORY_URL
    directory_filter: str = DEFAULT_DIRECTORY_FILTER
    directory_limit: int = 20000
    directory_timeout: float = 30.0
    steam_api_key: str = ""


@dataclass(frozen=True)
class ProbeConfig:
    """Per-server probe settings.

    ``timeout_ms`` is the socket timeout handed to the probe client; the
    overall attempt is bounded by ``timeout_ms + 1000``.
    """

    timeout_ms: int = 5000
    concurrency: int = 20
    max_attempts: int = 2
    backoff_seconds: float = 1.0
    request_rules: bool = True
    queue_capacity: int = 0  # 0 = unbounded

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0

    @property
    def attempt_timeout_seconds(self) -> float:
        return (self.timeout_ms + 1000) / 1000.0


@dataclass(frozen=True)
class LifecycleConfig:
    """Online/offline hysteresis and retention settings."""

    offline_threshold: int = 3
    retention_days: int = 7
    reap_interval_seconds: int = 86400


@dataclass(frozen=True)
class StoreConfig:
    """Registry store settings."""

    backend: str = StoreBackend.SQLITE
    db_path: Path = DEFAULT_DB_PATH
    busy_timeout: float = 30.0


@dataclass(frozen=True)
class ExecutionConfig:
    """Process lifecycle settings."""

    # Seconds in-flight probes may take to finish after shutdown is requested
    shutdown_timeout_seconds: float = 30.0
    # Fire a discovery and a sweep immediately at startup instead of waiting a full interval
    run_on_start: bool = True


@dataclass(frozen=True)
class LoggingConfig:
    """Logging output settings."""

    level: str = "INFO"
    json: bool = False
    diagnostic_tags: str = ""


@dataclass(frozen=True)
class Config:
    """Application configuration loaded from environment.

    This dataclass is frozen (immutable) to prevent accidental modification
    after creation. Settings are grouped into sub-configs by concern.
    """

    polling: PollingConfig = field(default_factory=PollingConfig)
    probe: ProbeConfig = field(default_factory=ProbeConfig)
    lifecycle: LifecycleConfig = field(default_factory=LifecycleConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    logging_config: LoggingConfig = field(default_factory=LoggingConfig)


def _parse_positive_int(value: str, name: str, default: int) -> int:
    """Parse a string as a positive integer with validation.

    Args:
        value: The string value to parse.
        name: The name of the setting (for error messages).
        default: The default value to use if parsing fails.

    Returns:
        The parsed positive integer, or the default if invalid.

    Logs a warning if the value is invalid.
    """
    try:
        parsed = int(value)
        if parsed <= 0:
            logging.warning(
                "Invalid %s: %d is not positive, using default %d",
                name,
                parsed,
                default,
            )
            return default
        return parsed
    except ValueError:
        logging.warning(
            "Invalid %s: '%s' is not a valid integer, using default %d",
            name,
            value,
            default,
        )
        return default


def _parse_non_negative_int(value: str, name: str, default: int) -> int:
    """Parse a string as a non-negative integer, falling back to ``default``."""
    try:
        parsed = int(value)
        if parsed < 0:
            logging.warning(
                "Invalid %s: %d is negative, using default %d",
                name,
                parsed,
                default,
            )
            return default
        return parsed
    except ValueError:
        logging.warning(
            "Invalid %s: '%s' is not a valid integer, using default %d",
            name,
            value,
            default,
        )
        return default


def _parse_non_negative_float(value: str, name: str, default: float) -> float:
    """Parse a string as a non-negative float with validation.

    Args:
        value: The string value to parse.
        name: The name of the setting (for error messages).
        default: The default value to use if parsing fails.

    Returns:
        The parsed non-negative float, or the default if invalid.

    Logs a warning if the value is invalid.
    """
    try:
        parsed = float(value)
        if parsed < 0:
            logging.warning(
                "Invalid %s: %f is negative, using default %f",
                name,
                parsed,
                default,
            )
            return default
        return parsed
    except ValueError:
        logging.warning(
            "Invalid %s: '%s' is not a valid number, using default %f",
            name,
            value,
            default,
        )
        return default


def _parse_bool(value: str) -> bool:
    """Parse a string as a boolean.

    Args:
        value: The string value to parse.

    Returns:
        True if value is "true", "1", or "yes" (case-insensitive), False otherwise.
    """
    return value.lower() in ("true", "1", "yes")


def _validate_log_level(value: str, default: str = "INFO") -> str:
    """Validate and normalize a log level string.

    Args:
        value: The log level string to validate.
        default: The default value to use if invalid.

    Returns:
        The validated log level (uppercase), or the default if invalid.

    Logs a warning if the value is invalid.
    """
    normalized = value.upper()
    if normalized not in VALID_LOG_LEVELS:
        logging.warning(
            "Invalid SERVERWATCH_LOG_LEVEL: '%s' is not valid, using default '%s'. "
            "Valid values: %s",
            value,
            default,
            ", ".join(sorted(VALID_LOG_LEVELS)),
        )
        return default
    return normalized


def _validate_store_backend(value: str, default: str = StoreBackend.SQLITE) -> str:
    """Validate and normalize a store backend name.

    Args:
        value: The backend string to validate.
        default: The default value to use if invalid.

    Returns:
        The validated backend (lowercase), or the default if invalid.
    """
    normalized = value.strip().lower()
    if not StoreBackend.is_valid(normalized):
        logging.warning(
            "Invalid SERVERWATCH_STORE: '%s' is not valid, using default '%s'. Valid values: %s",
            value,
            default,
            ", ".join(sorted(StoreBackend.values())),
        )
        return default
    return normalized


def load_config(env_file: Path | None = None) -> Config:
    """Load configuration from environment variables.

    Args:
        env_file: Optional path to .env file. If not provided,
                  looks for .env in current directory.

    Returns:
        Config object with loaded values.

    Values are validated and defaults are used for invalid inputs:
    - Integer values must be valid positive integers
    - LOG_LEVEL must be one of: DEBUG, INFO, WARNING, ERROR, CRITICAL
    - SERVERWATCH_STORE must be "sqlite" or "memory"
    """
    # Load .env file if it exists
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()

    polling = PollingConfig(
        interval_seconds=_parse_positive_int(
            os.getenv("SERVERWATCH_POLL_INTERVAL", "300"),
            "SERVERWATCH_POLL_INTERVAL",
            300,
        ),
        batch_size=_parse_positive_int(
            os.getenv("SERVERWATCH_BATCH_SIZE", "100"),
            "SERVERWATCH_BATCH_SIZE",
            100,
        ),
        directory_url=os.getenv("SERVERWATCH_DIRECTORY_URL", DEFAULT_DIRECTORY_URL),
        directory_filter=os.getenv("SERVERWATCH_DIRECTORY_FILTER", DEFAULT_DIRECTORY_FILTER),
        directory_limit=_parse_positive_int(
            os.getenv("SERVERWATCH_DIRECTORY_LIMIT", "20000"),
            "SERVERWATCH_DIRECTORY_LIMIT",
            20000,
        ),
        directory_timeout=_parse_non_negative_float(
            os.getenv("SERVERWATCH_DIRECTORY_TIMEOUT", "30.0"),
            "SERVERWATCH_DIRECTORY_TIMEOUT",
            30.0,
        ),
        steam_api_key=os.getenv("STEAM_API_KEY", ""),
    )

    probe = ProbeConfig(
        timeout_ms=_parse_positive_int(
            os.getenv("SERVERWATCH_PROBE_TIMEOUT_MS", "5000"),
            "SERVERWATCH_PROBE_TIMEOUT_MS",
            5000,
        ),
        concurrency=_parse_positive_int(
            os.getenv("SERVERWATCH_WORKER_CONCURRENCY", "20"),
            "SERVERWATCH_WORKER_CONCURRENCY",
            20,
        ),
        max_attempts=_parse_positive_int(
            os.getenv("SERVERWATCH_PROBE_MAX_ATTEMPTS", "2"),
            "SERVERWATCH_PROBE_MAX_ATTEMPTS",
            2,
        ),
        backoff_seconds=_parse_non_negative_float(
            os.getenv("SERVERWATCH_PROBE_BACKOFF", "1.0"),
            "SERVERWATCH_PROBE_BACKOFF",
            1.0,
        ),
        request_rules=_parse_bool(os.getenv("SERVERWATCH_PROBE_REQUEST_RULES", "true")),
        queue_capacity=_parse_non_negative_int(
            os.getenv("SERVERWATCH_QUEUE_CAPACITY", "0"),
            "SERVERWATCH_QUEUE_CAPACITY",
            0,
        ),
    )

    lifecycle = LifecycleConfig(
        offline_threshold=_parse_positive_int(
            os.getenv("SERVERWATCH_OFFLINE_THRESHOLD", "3"),
            "SERVERWATCH_OFFLINE_THRESHOLD",
            3,
        ),
        retention_days=_parse_positive_int(
            os.getenv("SERVERWATCH_RETENTION_DAYS", "7"),
            "SERVERWATCH_RETENTION_DAYS",
            7,
        ),
        reap_interval_seconds=_parse_positive_int(
            os.getenv("SERVERWATCH_REAP_INTERVAL", "86400"),
            "SERVERWATCH_REAP_INTERVAL",
            86400,
        ),
    )

    db_path_str = os.getenv("SERVERWATCH_DB_PATH", "")
    store = StoreConfig(
        backend=_validate_store_backend(os.getenv("SERVERWATCH_STORE", StoreBackend.SQLITE)),
        db_path=Path(db_path_str) if db_path_str else DEFAULT_DB_PATH,
        busy_timeout=_parse_non_negative_float(
            os.getenv("SERVERWATCH_DB_BUSY_TIMEOUT", "30.0"),
            "SERVERWATCH_DB_BUSY_TIMEOUT",
            30.0,
        ),
    )

    execution = ExecutionConfig(
        shutdown_timeout_seconds=_parse_non_negative_float(
            os.getenv("SERVERWATCH_SHUTDOWN_TIMEOUT", "30.0"),
            "SERVERWATCH_SHUTDOWN_TIMEOUT",
            30.0,
        ),
        run_on_start=_parse_bool(os.getenv("SERVERWATCH_RUN_ON_START", "true")),
    )

    logging_config = LoggingConfig(
        level=_validate_log_level(os.getenv("SERVERWATCH_LOG_LEVEL", "INFO")),
        json=_parse_bool(os.getenv("SERVERWATCH_LOG_JSON", "")),
        diagnostic_tags=os.getenv("SERVERWATCH_DIAGNOSTIC_TAGS", ""),
    )

    return Config(
        polling=polling,
        probe=probe,
        lifecycle=lifecycle,
        store=store,
        execution=execution,
        logging_config=logging_config,
    )
