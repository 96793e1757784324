"""Configuration loader with type-safe dataclasses."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml


class ConfigError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


# Offline page endpoint served by the origin app.
DEFAULT_OFFLINE_URL = "/offline-template"

# Offline page plus the assets it needs to render without the network.
DEFAULT_MANIFEST = (
    DEFAULT_OFFLINE_URL,
    "/css/tabler.min.css",
    "/css/app/tabler.custom.css",
    "/css/app/connection-indicator.css",
    "/images/fruit.png",
)

DEFAULT_CACHE_VERSION = "offline-cache-v1"

# Special version value: derive the version from a hash of the manifest URLs.
AUTO_VERSION = "auto"

STORE_BACKENDS = ("memory", "sqlite")


def _check_timeout(value: float | None, label: str) -> None:
    if value is not None and value <= 0:
        raise ConfigError(f"{label} must be positive or null (got {value})")


@dataclass(frozen=True)
class OriginConfig:
    """Configuration for the origin app behind the gateway.

    Timeouts are in seconds. None means no application deadline: a stalled
    connection is only treated as failed when the socket layer gives up.
    """

    url: str
    timeout: float | None = None
    navigation_timeout: float | None = None

    def __post_init__(self) -> None:
        if not self.url:
            raise ConfigError("Origin URL cannot be empty")
        if not self.url.startswith(("http://", "https://")):
            raise ConfigError(f"Origin URL must start with http:// or https://, got '{self.url}'")
        _check_timeout(self.timeout, "Origin timeout")
        _check_timeout(self.navigation_timeout, "Origin navigation_timeout")


@dataclass(frozen=True)
class CacheConfig:
    """Configuration for the versioned offline cache."""

    version: str = DEFAULT_CACHE_VERSION
    prefix: str = "offline-cache"  # used when version is "auto"
    offline_url: str = DEFAULT_OFFLINE_URL
    manifest: tuple[str, ...] = DEFAULT_MANIFEST
    skip_waiting: bool = True

    def __post_init__(self) -> None:
        if not self.version:
            raise ConfigError("Cache version cannot be empty")
        if not self.prefix:
            raise ConfigError("Cache prefix cannot be empty")
        if not self.offline_url:
            raise ConfigError("Offline URL cannot be empty")
        if not isinstance(self.manifest, tuple):
            raise ConfigError("Cache manifest must be a tuple of URLs")
        if self.offline_url not in self.manifest:
            # The offline page must be installed with the rest of the manifest
            object.__setattr__(self, "manifest", (self.offline_url, *self.manifest))
        if len(set(self.manifest)) != len(self.manifest):
            raise ConfigError("Cache manifest contains duplicate URLs")


def _get_default_store_path() -> str:
    """Get the default cache store path in the XDG data directory."""
    return str(Path.home() / ".local" / "share" / "offlinegate" / "cache.db")


DEFAULT_STORE_PATH = _get_default_store_path()


@dataclass(frozen=True)
class StoreConfig:
    """Configuration for the cache store backend."""

    backend: str = "sqlite"
    path: str = DEFAULT_STORE_PATH

    def __post_init__(self) -> None:
        if self.backend not in STORE_BACKENDS:
            raise ConfigError(f"Invalid store backend '{self.backend}'. Must be one of: {STORE_BACKENDS}")
        if self.backend == "sqlite" and not self.path:
            raise ConfigError("Store path is required for the sqlite backend")


@dataclass(frozen=True)
class ProxyConfig:
    """Configuration for the gateway HTTP server."""

    port: int = 8080
    max_workers: int = 8

    def __post_init__(self) -> None:
        if self.port < 1 or self.port > 65535:
            raise ConfigError(f"Proxy port must be between 1 and 65535, got {self.port}")
        if self.max_workers < 1:
            raise ConfigError(f"Proxy max_workers must be at least 1, got {self.max_workers}")


@dataclass(frozen=True)
class ConnectivityConfig:
    """Configuration for the periodic origin ping."""

    enabled: bool = True
    ping_url: str = "/api/ping"
    interval_seconds: int = 30
    timeout_seconds: int = 5

    def __post_init__(self) -> None:
        if self.enabled:
            if not self.ping_url:
                raise ConfigError("Connectivity ping_url is required when connectivity is enabled")
            if self.interval_seconds < 1:
                raise ConfigError(f"Connectivity interval must be at least 1 second, got {self.interval_seconds}")
            if self.timeout_seconds < 1:
                raise ConfigError(f"Connectivity timeout must be at least 1 second, got {self.timeout_seconds}")


@dataclass(frozen=True)
class DatesConfig:
    """Configuration for local date normalization."""

    timezone: str = "Asia/Jakarta"

    def __post_init__(self) -> None:
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ConfigError(f"Unknown timezone '{self.timezone}'")


@dataclass(frozen=True)
class WebhookConfig:
    """Configuration for a single webhook alert."""

    url: str
    enabled: bool = True
    on_failure: bool = True  # origin lost, cache install failed
    on_recovery: bool = True  # origin back, new cache version active
    cooldown_seconds: int = 300  # Minimum time between alerts for the same event to this webhook

    def __post_init__(self) -> None:
        if not self.url:
            raise ConfigError("Webhook URL cannot be empty")
        if not self.url.startswith(("http://", "https://")):
            raise ConfigError(f"Webhook URL must start with http:// or https://, got '{self.url}'")
        if self.cooldown_seconds < 0:
            raise ConfigError(f"Webhook cooldown_seconds must be non-negative, got {self.cooldown_seconds}")
        if not self.on_failure and not self.on_recovery:
            raise ConfigError("Webhook must have at least one of 'on_failure' or 'on_recovery' enabled")


@dataclass(frozen=True)
class AlertsConfig:
    """Configuration for operator alerts."""

    webhooks: list[WebhookConfig] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not isinstance(self.webhooks, list):
            raise ConfigError("Webhooks must be a list")


@dataclass(frozen=True)
class Config:
    """Main configuration container."""

    origin: OriginConfig
    cache: CacheConfig = field(default_factory=CacheConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    proxy: ProxyConfig = field(default_factory=ProxyConfig)
    connectivity: ConnectivityConfig = field(default_factory=ConnectivityConfig)
    dates: DatesConfig = field(default_factory=DatesConfig)
    alerts: AlertsConfig = field(default_factory=AlertsConfig)


def _section(data: dict, name: str) -> dict | None:
    value = data.get(name)
    if value is not None and not isinstance(value, dict):
        raise ConfigError(f"'{name}' section must be a dictionary")
    return value


def _optional_float(value: object, label: str) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{label} must be a number or null, got {value!r}")


def _parse_origin_config(data: dict | None) -> OriginConfig:
    """Parse origin configuration section."""
    if data is None:
        raise ConfigError("Configuration must contain an 'origin' section")

    url = data.get("url")
    if url is None:
        raise ConfigError("'origin' section is missing 'url' field")

    return OriginConfig(
        url=str(url).rstrip("/"),
        timeout=_optional_float(data.get("timeout"), "origin.timeout"),
        navigation_timeout=_optional_float(data.get("navigation_timeout"), "origin.navigation_timeout"),
    )


def _parse_cache_config(data: dict | None) -> CacheConfig:
    """Parse cache configuration section."""
    if data is None:
        return CacheConfig()

    manifest_data = data.get("manifest")
    if manifest_data is None:
        manifest = DEFAULT_MANIFEST
    elif isinstance(manifest_data, list):
        manifest = tuple(str(url) for url in manifest_data)
    else:
        raise ConfigError("'cache.manifest' must be a list")

    return CacheConfig(
        version=str(data.get("version", DEFAULT_CACHE_VERSION)),
        prefix=str(data.get("prefix", "offline-cache")),
        offline_url=str(data.get("offline_url", DEFAULT_OFFLINE_URL)),
        manifest=manifest,
        skip_waiting=bool(data.get("skip_waiting", True)),
    )


def _parse_store_config(data: dict | None) -> StoreConfig:
    """Parse store configuration section."""
    if data is None:
        return StoreConfig()

    return StoreConfig(
        backend=str(data.get("backend", "sqlite")),
        path=str(data.get("path", DEFAULT_STORE_PATH)),
    )


def _parse_proxy_config(data: dict | None) -> ProxyConfig:
    """Parse proxy configuration section."""
    if data is None:
        return ProxyConfig()

    return ProxyConfig(
        port=int(data.get("port", 8080)),
        max_workers=int(data.get("max_workers", 8)),
    )


def _parse_connectivity_config(data: dict | None) -> ConnectivityConfig:
    """Parse connectivity configuration section."""
    if data is None:
        return ConnectivityConfig()

    return ConnectivityConfig(
        enabled=bool(data.get("enabled", True)),
        ping_url=str(data.get("ping_url", "/api/ping")),
        interval_seconds=int(data.get("interval_seconds", 30)),
        timeout_seconds=int(data.get("timeout_seconds", 5)),
    )


def _parse_dates_config(data: dict | None) -> DatesConfig:
    """Parse dates configuration section."""
    if data is None:
        return DatesConfig()

    return DatesConfig(timezone=str(data.get("timezone", "Asia/Jakarta")))


def _parse_webhook_config(data: dict, index: int) -> WebhookConfig:
    """Parse a single webhook configuration entry."""
    if not isinstance(data, dict):
        raise ConfigError(f"Webhook entry {index} must be a dictionary")

    url = data.get("url")
    if url is None:
        raise ConfigError(f"Webhook entry {index} is missing 'url' field")

    return WebhookConfig(
        url=str(url),
        enabled=bool(data.get("enabled", True)),
        on_failure=bool(data.get("on_failure", True)),
        on_recovery=bool(data.get("on_recovery", True)),
        cooldown_seconds=int(data.get("cooldown_seconds", 300)),
    )


def _parse_alerts_config(data: dict | None) -> AlertsConfig:
    """Parse alerts configuration section."""
    if data is None:
        return AlertsConfig()

    webhooks_data = data.get("webhooks", [])
    if not isinstance(webhooks_data, list):
        raise ConfigError("'alerts.webhooks' must be a list")

    return AlertsConfig(webhooks=[_parse_webhook_config(item, i) for i, item in enumerate(webhooks_data)])


def _apply_env_overrides(config_data: dict) -> dict:
    """Apply environment variable overrides to configuration.

    Supported overrides:
    - OFFLINEGATE_ORIGIN_URL: Override origin.url
    - OFFLINEGATE_CACHE_VERSION: Override cache.version
    - OFFLINEGATE_PROXY_PORT: Override proxy.port
    - OFFLINEGATE_STORE_PATH: Override store.path
    - OFFLINEGATE_TIMEZONE: Override dates.timezone
    """
    overrides = (
        ("OFFLINEGATE_ORIGIN_URL", "origin", "url", str),
        ("OFFLINEGATE_CACHE_VERSION", "cache", "version", str),
        ("OFFLINEGATE_PROXY_PORT", "proxy", "port", int),
        ("OFFLINEGATE_STORE_PATH", "store", "path", str),
        ("OFFLINEGATE_TIMEZONE", "dates", "timezone", str),
    )
    for env_name, section, key, convert in overrides:
        value = os.environ.get(env_name)
        if value is None:
            continue
        if config_data.get(section) is None:
            config_data[section] = {}
        elif not isinstance(config_data[section], dict):
            continue  # rejected later by _section()
        try:
            config_data[section][key] = convert(value)
        except ValueError:
            raise ConfigError(f"Invalid value for {env_name}: {value!r}")

    return config_data


def load_config(config_path: str) -> Config:
    """Load and validate configuration from a YAML file.

    Args:
        config_path: Path to the YAML configuration file.

    Returns:
        Validated Config object.

    Raises:
        ConfigError: If the file cannot be read or configuration is invalid.
    """
    path = Path(config_path)

    if not path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML configuration: {e}")
    except OSError as e:
        raise ConfigError(f"Failed to read configuration file: {e}")

    if data is None:
        raise ConfigError("Configuration file is empty")

    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a YAML dictionary")

    data = _apply_env_overrides(data)

    return Config(
        origin=_parse_origin_config(_section(data, "origin")),
        cache=_parse_cache_config(_section(data, "cache")),
        store=_parse_store_config(_section(data, "store")),
        proxy=_parse_proxy_config(_section(data, "proxy")),
        connectivity=_parse_connectivity_config(_section(data, "connectivity")),
        dates=_parse_dates_config(_section(data, "dates")),
        alerts=_parse_alerts_config(_section(data, "alerts")),
    )
