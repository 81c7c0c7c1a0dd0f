"""
Process-wide certificate manager.

Owns the configuration store, the certificate index and the library
capabilities, and rebuilds the index whenever the configuration is reloaded.
"""
import logging
from typing import Any, Iterable, Mapping, Optional

from .builder import ContextBuilder, ContextResult
from .index import CertificateIndexHolder
from .library import HAS_SSL, TLSCapabilities, detect_capabilities
from .resolver import CredentialPair, CredentialResolver
from .settings import ConfigStore, get_config_store


logger = logging.getLogger(__name__)

NO_ENCRYPTION_SUPPORT = "Encryption support (the ssl module) was not found"


class CertManager:
    """
    Certificate discovery and TLS context creation.

    One instance per process is normally enough; see get_cert_manager().
    """

    def __init__(
        self,
        store: Optional[ConfigStore] = None,
        capabilities: Optional[TLSCapabilities] = None,
        depth_limit: int = 3,
    ):
        self.store = store or get_config_store()
        self.capabilities = capabilities or detect_capabilities()
        self.index = CertificateIndexHolder(depth_limit=depth_limit)
        self.resolver = CredentialResolver(self.store, self.index)
        self.builder = ContextBuilder(self.store, self.resolver, self.capabilities)
        self.store.add_reload_handler(self._on_config_reloaded)

    def _on_config_reloaded(self) -> None:
        self.index.rebuild(self.resolver.certificate_root())

    def create_context(
        self,
        identity: str,
        mode: str,
        overrides: Iterable[Optional[Mapping[str, Any]]] = (),
    ) -> ContextResult:
        """Create a TLS context; see ContextBuilder.create_context()."""
        if not HAS_SSL or not self.capabilities.available:
            return None, NO_ENCRYPTION_SUPPORT, None
        return self.builder.create_context(identity, mode, overrides)

    def reload_ssl_config(self) -> None:
        """Re-read configuration and rebuild the certificate index."""
        logger.info("[TLS-CONTEXT] Reloading SSL/TLS configuration")
        # The store notifies _on_config_reloaded, which rebuilds the index
        self.store.reload()

    def find_cert(self, user_certs: Optional[str], name: str) -> Optional[CredentialPair]:
        return self.resolver.find_cert(user_certs, name)

    def find_host_cert(self, host: Optional[str]) -> Optional[CredentialPair]:
        return self.resolver.find_host_cert(host)

    def find_service_cert(self, service: str, port: Optional[int] = None) -> Optional[CredentialPair]:
        return self.resolver.find_service_cert(service, port)

    def index_snapshot(self) -> dict[str, dict[str, list[str]]]:
        """Current index as plain data: identity -> {file: sorted scopes}."""
        index = self.resolver.current_index()
        return {
            name: {path: sorted(services) for path, services in files.items()}
            for name, files in index.items()
        }

    def close(self) -> None:
        """Stop listening for configuration reloads."""
        self.store.remove_reload_handler(self._on_config_reloaded)


# Global instance
_cert_manager: Optional[CertManager] = None


def get_cert_manager() -> CertManager:
    """Get the process-wide certificate manager."""
    global _cert_manager

    if _cert_manager is None:
        _cert_manager = CertManager()
    return _cert_manager


def reset_cert_manager() -> None:
    """Drop the process-wide manager (the next call creates a fresh one)."""
    global _cert_manager

    if _cert_manager is not None:
        _cert_manager.close()
    _cert_manager = None


def create_context(
    identity: str,
    mode: str,
    overrides: Iterable[Optional[Mapping[str, Any]]] = (),
) -> ContextResult:
    return get_cert_manager().create_context(identity, mode, overrides)


def reload_ssl_config() -> None:
    get_cert_manager().reload_ssl_config()


def find_host_cert(host: Optional[str]) -> Optional[CredentialPair]:
    return get_cert_manager().find_host_cert(host)
