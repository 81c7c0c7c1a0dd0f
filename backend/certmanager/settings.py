"""
Certificate manager configuration settings.

Loads the JSON configuration store: a "*" section holding global defaults
and one section per host or service identity. The loaded data is kept as an
immutable snapshot which is swapped wholesale on reload.
"""
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator


logger = logging.getLogger(__name__)

# Config file location
CONFIG_DIR = Path(os.environ.get("CONFIG_DIR", "/config"))
CERTMANAGER_CONFIG_FILE = CONFIG_DIR / "certmanager.json"

GLOBAL_SECTION = "*"
DEFAULT_CERTIFICATES_DIR = "certs"


class HostSettings(BaseModel):
    """Per-host or per-service configuration section."""

    model_config = ConfigDict(extra="allow")

    # Base path searched for this host's certificate and key
    certificate: Optional[str] = None

    # SSL/TLS options layered over the global ones for this host
    ssl: Optional[dict[str, Any]] = None


class GlobalSettings(HostSettings):
    """The "*" section. Extra keys carry <service>_certificate entries."""

    # Root of the certificate tree, relative to the config directory
    certificates: str = DEFAULT_CERTIFICATES_DIR

    # Leave TLS compression enabled (off by default)
    ssl_compression: bool = False

    @field_validator("certificates")
    @classmethod
    def validate_certificates(cls, v: str) -> str:
        """Strip whitespace and trailing slashes from the certificate root."""
        v = v.strip()
        if len(v) > 1:
            v = v.rstrip("/")
        return v or DEFAULT_CERTIFICATES_DIR


@dataclass(frozen=True)
class ConfigSnapshot:
    """Point-in-time view of the configuration store."""

    config_root: str
    sections: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)

    def get(self, identity: str, key: str, default: Any = None) -> Any:
        """Look up one option for an identity ("*" for global)."""
        section = self.sections.get(identity)
        if section is None:
            return default
        value = section.get(key)
        return default if value is None else value

    @property
    def global_settings(self) -> GlobalSettings:
        return GlobalSettings(**self.sections.get(GLOBAL_SECTION, {}))

    @property
    def certificates(self) -> str:
        return self.global_settings.certificates

    @property
    def global_ssl(self) -> Optional[dict[str, Any]]:
        return self.global_settings.ssl

    def host_settings(self, identity: str) -> HostSettings:
        return HostSettings(**self.sections.get(identity, {}))

    def resolve_path(self, path: str) -> str:
        """Resolve a possibly relative path against the config root."""
        return resolve_relative_path(self.config_root, path)


def resolve_relative_path(parent: str, path: str) -> str:
    """Join path onto parent unless path is already absolute (or ~-relative)."""
    if path.startswith("~"):
        return os.path.expanduser(path)
    if os.path.isabs(path):
        return path
    return os.path.join(parent, path)


def _freeze_sections(raw: Mapping[str, Any]) -> Mapping[str, Mapping[str, Any]]:
    sections = {}
    for identity, section in raw.items():
        if not isinstance(section, dict):
            logger.warning("[CERT-SETTINGS] Ignoring non-object section %r", identity)
            continue
        try:
            if identity == GLOBAL_SECTION:
                validated = GlobalSettings(**section)
            else:
                validated = HostSettings(**section)
        except ValidationError as e:
            logger.error("[CERT-SETTINGS] Invalid settings for %r: %s", identity, e)
            continue
        sections[identity] = MappingProxyType(validated.model_dump(exclude_none=True))
    return MappingProxyType(sections)


class ConfigStore:
    """Read-only key/value configuration with a reload notification."""

    def __init__(
        self,
        config_file: Optional[Path] = None,
        data: Optional[Mapping[str, Any]] = None,
        config_root: Optional[str] = None,
    ):
        """
        Initialize the store.

        Args:
            config_file: JSON file to load (default: CONFIG_DIR/certmanager.json)
            data: Literal sections to use instead of reading a file
            config_root: Directory relative paths are resolved against
                (default: the config file's directory)
        """
        self.config_file = Path(config_file) if config_file else CERTMANAGER_CONFIG_FILE
        self._data = data
        self._config_root = config_root or str(self.config_file.parent)
        self._reload_handlers: list[Callable[[], None]] = []
        self._snapshot = self._load()

    @property
    def config_root(self) -> str:
        return self._config_root

    def _read_file(self) -> Mapping[str, Any]:
        if not self.config_file.exists():
            logger.info("[CERT-SETTINGS] No config file at %s, using defaults", self.config_file)
            return {}
        try:
            data = json.loads(self.config_file.read_text())
        except (OSError, ValueError) as e:
            logger.error("[CERT-SETTINGS] Failed to load %s: %s", self.config_file, e)
            return {}
        if not isinstance(data, dict):
            logger.error("[CERT-SETTINGS] %s must contain a JSON object", self.config_file)
            return {}
        logger.info("[CERT-SETTINGS] Loaded %d config sections from %s", len(data), self.config_file)
        return data

    def _load(self) -> ConfigSnapshot:
        raw = self._data if self._data is not None else self._read_file()
        return ConfigSnapshot(config_root=self._config_root, sections=_freeze_sections(raw))

    def snapshot(self) -> ConfigSnapshot:
        """Get the current configuration snapshot."""
        return self._snapshot

    def update(self, data: Mapping[str, Any]) -> None:
        """Replace the literal sections (no file is written) and reload."""
        self._data = data
        self.reload()

    def add_reload_handler(self, handler: Callable[[], None]) -> None:
        """Register a callback fired after every reload."""
        self._reload_handlers.append(handler)

    def remove_reload_handler(self, handler: Callable[[], None]) -> bool:
        if handler in self._reload_handlers:
            self._reload_handlers.remove(handler)
            return True
        return False

    def reload(self) -> ConfigSnapshot:
        """Re-read the configuration, swap the snapshot and notify handlers."""
        self._snapshot = self._load()
        logger.info("[CERT-SETTINGS] Configuration reloaded")
        for handler in list(self._reload_handlers):
            handler()
        return self._snapshot


# In-memory cache of the configuration store
_cached_config_store: Optional[ConfigStore] = None


def get_config_store() -> ConfigStore:
    """Get the process-wide configuration store."""
    global _cached_config_store

    if _cached_config_store is None:
        _cached_config_store = ConfigStore()
    return _cached_config_store


def clear_config_store_cache() -> None:
    """Clear the cached configuration store (forces reload)."""
    global _cached_config_store
    _cached_config_store = None
    logger.info("[CERT-SETTINGS] Configuration store cache cleared")
