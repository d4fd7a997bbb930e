"""Configuration loader with type-safe dataclasses."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

import yaml


class ConfigError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


# Placeholder substituted with the version tag in namespace name templates.
VERSION_PLACEHOLDER = "{version}"

DEFAULT_INSTALL_MANIFEST = (
    "/",
    "/index.html",
    "/inquiry",
    "/manifest.json",
    "/images/logoon.png",
)

DEFAULT_SYNC_PATHS = (
    "/api/booking-inquiry",
    "/api/contact-message",
)


@dataclass(frozen=True)
class UpstreamConfig:
    """Origin server the gateway forwards network requests to.

    The origin is scheme, host and optional port only; every site path is
    resolved against its root.
    """

    origin: str
    timeout: int = 30  # seconds, passed through to the transport

    def __post_init__(self) -> None:
        if not self.origin:
            raise ConfigError("Upstream origin cannot be empty")
        if not self.origin.startswith(("http://", "https://")):
            raise ConfigError(f"Upstream origin must start with http:// or https://, got '{self.origin}'")
        parsed = urlparse(self.origin)
        if not parsed.hostname:
            raise ConfigError(f"Upstream origin has no host, got '{self.origin}'")
        if parsed.path or parsed.query or parsed.fragment:
            raise ConfigError(f"Upstream origin must not include a path, query or fragment, got '{self.origin}'")
        if self.timeout < 1:
            raise ConfigError(f"Upstream timeout must be at least 1 second (got {self.timeout})")


@dataclass(frozen=True)
class CacheConfig:
    """Cache namespace names and the install manifest.

    Namespace names are templates: ``{version}`` is replaced with the version
    tag, so bumping ``version`` rotates every namespace at once.
    """

    version: str = "v3"
    name: str = "heaven-of-munroe-{version}"
    static: str = "static-{version}"
    images: str = "images-{version}"
    api: str = "api-{version}"
    install_manifest: tuple[str, ...] = DEFAULT_INSTALL_MANIFEST
    fallback_url: str = "/index.html"

    def __post_init__(self) -> None:
        if not self.version:
            raise ConfigError("Cache version cannot be empty")
        for role in ("name", "static", "images", "api"):
            if not getattr(self, role):
                raise ConfigError(f"Cache namespace '{role}' cannot be empty")
        for url in self.install_manifest:
            if not url.startswith("/"):
                raise ConfigError(f"Install manifest entries must be absolute paths, got '{url}'")
        if not self.fallback_url.startswith("/"):
            raise ConfigError(f"Fallback URL must be an absolute path, got '{self.fallback_url}'")

    def _render(self, template: str) -> str:
        return template.replace(VERSION_PLACEHOLDER, self.version)

    @property
    def cache_name(self) -> str:
        return self._render(self.name)

    @property
    def static_name(self) -> str:
        return self._render(self.static)

    @property
    def images_name(self) -> str:
        return self._render(self.images)

    @property
    def api_name(self) -> str:
        return self._render(self.api)

    @property
    def current_names(self) -> frozenset[str]:
        """Names of every namespace belonging to the current generation."""
        return frozenset((self.cache_name, self.static_name, self.images_name, self.api_name))


@dataclass(frozen=True)
class RoutingConfig:
    """Path rules used by the request router."""

    api_prefix: str = "/api/"
    images_path: str = "/images/"

    def __post_init__(self) -> None:
        if not self.api_prefix.startswith("/"):
            raise ConfigError(f"API prefix must start with '/', got '{self.api_prefix}'")
        if not self.images_path:
            raise ConfigError("Images path cannot be empty")


def _get_default_storage_path() -> str:
    """Get the default cache database path using XDG-compliant directory."""
    home = Path.home()
    return str(home / ".local" / "share" / "offlinecache" / "cache.db")


DEFAULT_STORAGE_PATH = _get_default_storage_path()


@dataclass(frozen=True)
class StorageConfig:
    """Configuration for the SQLite cache storage."""

    path: str = DEFAULT_STORAGE_PATH


@dataclass(frozen=True)
class ServerConfig:
    """Configuration for the caching gateway."""

    enabled: bool = True
    port: int = 8080
    admin_token: str | None = None  # Required for /__sw/ control endpoints when set

    def __post_init__(self) -> None:
        if self.port < 1 or self.port > 65535:
            raise ConfigError(f"Server port must be between 1 and 65535, got {self.port}")


@dataclass(frozen=True)
class WebhookConfig:
    """A webhook that receives displayed notifications."""

    url: str
    enabled: bool = True

    def __post_init__(self) -> None:
        if not self.url:
            raise ConfigError("Webhook URL cannot be empty")
        if not self.url.startswith(("http://", "https://")):
            raise ConfigError(f"Webhook URL must start with http:// or https://, got '{self.url}'")


@dataclass(frozen=True)
class NotificationConfig:
    """Visual contract for push notifications."""

    title: str = "Heaven of Munroe"
    default_body: str = "New update from Heaven of Munroe!"
    icon: str = "/images/logoon.png"
    badge: str = "/images/logoon.png"
    vibrate: tuple[int, ...] = (100, 50, 100)
    webhooks: list[WebhookConfig] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.title:
            raise ConfigError("Notification title cannot be empty")
        if any(v < 0 for v in self.vibrate):
            raise ConfigError(f"Vibration pattern values must be non-negative, got {list(self.vibrate)}")


@dataclass(frozen=True)
class SyncConfig:
    """Background sync of offline form submissions."""

    tag: str = "background-sync"
    paths: tuple[str, ...] = DEFAULT_SYNC_PATHS
    max_attempts: int = 5

    def __post_init__(self) -> None:
        if not self.tag:
            raise ConfigError("Sync tag cannot be empty")
        if self.max_attempts < 1:
            raise ConfigError(f"Sync max_attempts must be at least 1 (got {self.max_attempts})")


@dataclass(frozen=True)
class Config:
    """Main configuration container."""

    upstream: UpstreamConfig
    cache: CacheConfig = field(default_factory=CacheConfig)
    routing: RoutingConfig = field(default_factory=RoutingConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)


def _require_section(data: dict | None, name: str) -> dict:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"'{name}' section must be a dictionary")
    return data


def _parse_path_list(value: object, name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    if value is None:
        return default
    if not isinstance(value, list):
        raise ConfigError(f"'{name}' must be a list")
    return tuple(str(v) for v in value)


def _parse_upstream_config(data: dict | None) -> UpstreamConfig:
    """Parse upstream configuration section."""
    data = _require_section(data, "upstream")
    origin = data.get("origin")
    if origin is None:
        raise ConfigError("'upstream' section is missing 'origin' field")

    return UpstreamConfig(
        origin=str(origin).rstrip("/"),
        timeout=int(data.get("timeout", 30)),
    )


def _parse_cache_config(data: dict | None) -> CacheConfig:
    """Parse cache configuration section."""
    data = _require_section(data, "cache")
    defaults = CacheConfig()

    return CacheConfig(
        version=str(data.get("version", defaults.version)),
        name=str(data.get("name", defaults.name)),
        static=str(data.get("static", defaults.static)),
        images=str(data.get("images", defaults.images)),
        api=str(data.get("api", defaults.api)),
        install_manifest=_parse_path_list(
            data.get("install_manifest"), "cache.install_manifest", DEFAULT_INSTALL_MANIFEST
        ),
        fallback_url=str(data.get("fallback_url", defaults.fallback_url)),
    )


def _parse_routing_config(data: dict | None) -> RoutingConfig:
    """Parse routing configuration section."""
    data = _require_section(data, "routing")

    return RoutingConfig(
        api_prefix=str(data.get("api_prefix", "/api/")),
        images_path=str(data.get("images_path", "/images/")),
    )


def _parse_storage_config(data: dict | None) -> StorageConfig:
    """Parse storage configuration section."""
    data = _require_section(data, "storage")
    path = str(data.get("path", DEFAULT_STORAGE_PATH))
    return StorageConfig(path=os.path.expanduser(path))


def _parse_server_config(data: dict | None) -> ServerConfig:
    """Parse server configuration section."""
    data = _require_section(data, "server")

    admin_token = data.get("admin_token")
    if admin_token is not None:
        admin_token = str(admin_token)

    return ServerConfig(
        enabled=bool(data.get("enabled", True)),
        port=int(data.get("port", 8080)),
        admin_token=admin_token,
    )


def _parse_webhook_config(data: dict, index: int) -> WebhookConfig:
    """Parse a single webhook configuration entry."""
    if not isinstance(data, dict):
        raise ConfigError(f"Webhook entry {index} must be a dictionary")

    url = data.get("url")
    if url is None:
        raise ConfigError(f"Webhook entry {index} is missing 'url' field")

    return WebhookConfig(url=str(url), enabled=bool(data.get("enabled", True)))


def _parse_notification_config(data: dict | None) -> NotificationConfig:
    """Parse notifications configuration section."""
    data = _require_section(data, "notifications")
    defaults = NotificationConfig()

    vibrate_data = data.get("vibrate")
    if vibrate_data is None:
        vibrate = defaults.vibrate
    elif isinstance(vibrate_data, list):
        try:
            vibrate = tuple(int(v) for v in vibrate_data)
        except (TypeError, ValueError):
            raise ConfigError(f"'notifications.vibrate' must be a list of integers, got {vibrate_data}")
    else:
        raise ConfigError("'notifications.vibrate' must be a list")

    webhooks_data = data.get("webhooks", [])
    if not isinstance(webhooks_data, list):
        raise ConfigError("'notifications.webhooks' must be a list")

    return NotificationConfig(
        title=str(data.get("title", defaults.title)),
        default_body=str(data.get("default_body", defaults.default_body)),
        icon=str(data.get("icon", defaults.icon)),
        badge=str(data.get("badge", defaults.badge)),
        vibrate=vibrate,
        webhooks=[_parse_webhook_config(w, i) for i, w in enumerate(webhooks_data)],
    )


def _parse_sync_config(data: dict | None) -> SyncConfig:
    """Parse sync configuration section."""
    data = _require_section(data, "sync")

    return SyncConfig(
        tag=str(data.get("tag", "background-sync")),
        paths=_parse_path_list(data.get("paths"), "sync.paths", DEFAULT_SYNC_PATHS),
        max_attempts=int(data.get("max_attempts", 5)),
    )


def _apply_env_overrides(config_data: dict) -> dict:
    """Apply environment variable overrides to configuration.

    Supported overrides:
    - OFFLINECACHE_UPSTREAM_ORIGIN: Override upstream.origin
    - OFFLINECACHE_CACHE_VERSION: Override cache.version
    - OFFLINECACHE_SERVER_PORT: Override server.port
    - OFFLINECACHE_ADMIN_TOKEN: Override server.admin_token
    - OFFLINECACHE_STORAGE_PATH: Override storage.path
    """
    for section in ("upstream", "cache", "server", "storage"):
        if config_data.get(section) is None:
            config_data[section] = {}
        elif not isinstance(config_data[section], dict):
            raise ConfigError(f"'{section}' section must be a dictionary")

    origin = os.environ.get("OFFLINECACHE_UPSTREAM_ORIGIN")
    if origin is not None:
        config_data["upstream"]["origin"] = origin

    version = os.environ.get("OFFLINECACHE_CACHE_VERSION")
    if version is not None:
        config_data["cache"]["version"] = version

    port = os.environ.get("OFFLINECACHE_SERVER_PORT")
    if port is not None:
        try:
            config_data["server"]["port"] = int(port)
        except ValueError:
            raise ConfigError(f"OFFLINECACHE_SERVER_PORT must be an integer, got '{port}'")

    admin_token = os.environ.get("OFFLINECACHE_ADMIN_TOKEN")
    if admin_token is not None:
        config_data["server"]["admin_token"] = admin_token

    storage_path = os.environ.get("OFFLINECACHE_STORAGE_PATH")
    if storage_path is not None:
        config_data["storage"]["path"] = storage_path

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

    try:
        return Config(
            upstream=_parse_upstream_config(data.get("upstream")),
            cache=_parse_cache_config(data.get("cache")),
            routing=_parse_routing_config(data.get("routing")),
            storage=_parse_storage_config(data.get("storage")),
            server=_parse_server_config(data.get("server")),
            notifications=_parse_notification_config(data.get("notifications")),
            sync=_parse_sync_config(data.get("sync")),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid configuration value: {e}")
