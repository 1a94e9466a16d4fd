"""
Configuration management and loading.

Handles the YAML settings file and environment variable overrides.
"""

import os
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional
from urllib.parse import urlparse
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

PSI_ENDPOINT = "https://www.googleapis.com/pagespeedonline/v5/runPagespeed"
DEFAULT_CONFIG_PATH = "pagespeed_watcher.yaml"


@dataclass(frozen=True)
class QuotaConfig:
    """Provider usage limits and pricing."""
    daily_limit: int = 25000
    per_minute_limit: int = 10
    cost_per_request_usd: Decimal = Decimal("0.002")

    def __post_init__(self):
        """Validate quota values."""
        if self.daily_limit <= 0:
            raise ValueError("daily_limit must be > 0")
        if self.per_minute_limit <= 0:
            raise ValueError("per_minute_limit must be > 0")
        if self.cost_per_request_usd < 0:
            raise ValueError("cost_per_request must be >= 0")


@dataclass(frozen=True)
class HttpConfig:
    """Timeouts (seconds) and transport retries for PSI calls.

    ``retries`` only covers failed connection attempts; a request that
    reached the provider is never retried.
    """
    timeout: float = 120.0
    connect_timeout: float = 15.0
    retries: int = 0

    def __post_init__(self):
        if self.timeout <= 0:
            raise ValueError("timeout must be > 0")
        if self.connect_timeout <= 0:
            raise ValueError("connect_timeout must be > 0")
        if self.retries < 0:
            raise ValueError("retries must be >= 0")


@dataclass(frozen=True)
class ThresholdConfig:
    """Percentage score boundaries for the performance rating."""
    excellent: int = 90
    good: int = 70

    def __post_init__(self):
        if not 0 <= self.good <= self.excellent <= 100:
            raise ValueError("thresholds must satisfy 0 <= good <= excellent <= 100")


@dataclass(frozen=True)
class WatcherConfig:
    """Complete application configuration."""
    api_key: Optional[str] = None
    endpoint: str = PSI_ENDPOINT
    quota: QuotaConfig = field(default_factory=QuotaConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)
    app_url: Optional[str] = None
    enforce_same_host: bool = False
    timezone: Optional[str] = None
    db_path: str = "pagespeed_watcher.db"

    def __post_init__(self):
        if self.enforce_same_host and not self.app_url:
            raise ValueError("enforce_same_host requires app.url to be set")
        if self.timezone is not None:
            try:
                ZoneInfo(self.timezone)
            except (ZoneInfoNotFoundError, ValueError):
                raise ValueError(f"Unknown timezone: {self.timezone}")

    @property
    def app_host(self) -> Optional[str]:
        """Host of the application base URL, if one is configured."""
        if not self.app_url:
            return None
        return urlparse(self.app_url).hostname

    def clock(self) -> Callable[[], datetime]:
        """Time source for rate windows and ledger dates.

        Local time when no timezone is configured, otherwise the current
        time in that zone.
        """
        if self.timezone is None:
            return datetime.now
        zone = ZoneInfo(self.timezone)
        return lambda: datetime.now(zone)


_SECTIONS = {
    "api": {"key", "endpoint", "daily_limit", "rate_limit_per_minute", "cost_per_request"},
    "http": {"timeout", "connect_timeout", "retries"},
    "app": {"url", "enforce_same_host", "timezone"},
    "storage": {"db_path"},
    "thresholds": {"excellent", "good"},
}

# Environment variable -> (section, key)
ENV_OVERRIDES = {
    "PSI_API_KEY": ("api", "key"),
    "API_DAILY_LIMIT": ("api", "daily_limit"),
    "RATE_LIMIT_PER_MINUTE": ("api", "rate_limit_per_minute"),
    "PSI_COST_PER_REQUEST": ("api", "cost_per_request"),
    "APP_URL": ("app", "url"),
    "DEFAULT_TIMEZONE": ("app", "timezone"),
    "WATCHER_DB_PATH": ("storage", "db_path"),
}


def load_watcher_config(
    path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None
) -> WatcherConfig:
    """Load and validate configuration from a YAML file and the environment.

    Strict validation ensures no silent misconfigurations that could lead
    to quota overruns or unexpected costs. Environment variables override
    file values.

    Args:
        path: Path to YAML configuration file; None means defaults only
        environ: Environment mapping (defaults to ``os.environ``)

    Returns:
        Validated WatcherConfig object

    Raises:
        FileNotFoundError: If an explicit config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    raw_config: Dict[str, Any] = {}

    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(config_path, 'r', encoding='utf-8') as f:
            try:
                raw_config = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

        if not isinstance(raw_config, dict):
            raise ValueError("Configuration file must contain a mapping")

    unknown_keys = set(raw_config.keys()) - set(_SECTIONS)
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    sections: Dict[str, Dict[str, Any]] = {}
    for name, allowed in _SECTIONS.items():
        data = raw_config.get(name) or {}
        if not isinstance(data, dict):
            raise ValueError(f"'{name}' must be a dictionary")
        unknown = set(data.keys()) - allowed
        if unknown:
            raise ValueError(f"Unknown {name} keys: {unknown}")
        sections[name] = dict(data)

    env = os.environ if environ is None else environ
    for var, (section, key) in ENV_OVERRIDES.items():
        value = env.get(var)
        if value not in (None, ""):
            sections[section][key] = value

    return _build_config(sections)


def _build_config(sections: Dict[str, Dict[str, Any]]) -> WatcherConfig:
    api = sections["api"]
    http = sections["http"]
    app = sections["app"]
    thresholds = sections["thresholds"]

    defaults = QuotaConfig()
    quota = QuotaConfig(
        daily_limit=_int(api.get("daily_limit", defaults.daily_limit), "api.daily_limit"),
        per_minute_limit=_int(
            api.get("rate_limit_per_minute", defaults.per_minute_limit),
            "api.rate_limit_per_minute"
        ),
        cost_per_request_usd=_decimal(
            api.get("cost_per_request", defaults.cost_per_request_usd),
            "api.cost_per_request"
        )
    )

    http_defaults = HttpConfig()
    http_config = HttpConfig(
        timeout=_float(http.get("timeout", http_defaults.timeout), "http.timeout"),
        connect_timeout=_float(
            http.get("connect_timeout", http_defaults.connect_timeout),
            "http.connect_timeout"
        ),
        retries=_int(http.get("retries", http_defaults.retries), "http.retries")
    )

    threshold_defaults = ThresholdConfig()
    threshold_config = ThresholdConfig(
        excellent=_int(thresholds.get("excellent", threshold_defaults.excellent), "thresholds.excellent"),
        good=_int(thresholds.get("good", threshold_defaults.good), "thresholds.good")
    )

    app_url = app.get("url")
    if app_url is not None:
        app_url = str(app_url).strip() or None
        if app_url is not None:
            parsed = urlparse(app_url)
            if parsed.scheme not in ("http", "https") or not parsed.hostname:
                raise ValueError(f"'app.url' must be an absolute http(s) URL: {app_url}")

    config = WatcherConfig(
        api_key=_optional_str(api.get("key")),
        endpoint=str(api.get("endpoint", PSI_ENDPOINT)),
        quota=quota,
        http=http_config,
        thresholds=threshold_config,
        app_url=app_url,
        enforce_same_host=_bool(app.get("enforce_same_host", False), "app.enforce_same_host"),
        timezone=_optional_str(app.get("timezone")),
    )

    db_path = sections["storage"].get("db_path")
    if db_path is not None:
        config = replace(config, db_path=str(db_path))
    return config


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _int(value: Any, path: str) -> int:
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise ValueError(f"'{path}' must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"'{path}' must be an integer")


def _float(value: Any, path: str) -> float:
    if isinstance(value, bool):
        raise ValueError(f"'{path}' must be a number")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"'{path}' must be a number")


def _decimal(value: Any, path: str) -> Decimal:
    if isinstance(value, bool):
        raise ValueError(f"'{path}' must be a number")
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"'{path}' must be a number")
    if not result.is_finite():
        raise ValueError(f"'{path}' must be a number")
    return result


def _bool(value: Any, path: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "1", "yes", "on"):
        return True
    if isinstance(value, str) and value.lower() in ("false", "0", "no", "off"):
        return False
    raise ValueError(f"'{path}' must be a boolean")
