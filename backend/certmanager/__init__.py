"""
Certificate discovery and TLS context configuration.

Provides:
- Identity-based indexing of the certificate directory tree
- Certificate/key lookup by hostname or service, with legacy file naming
  conventions and parent-domain fallback
- Layered SSL/TLS configuration and context creation with actionable
  diagnostics
"""

from .builder import ContextBuilder, ResolvedContextConfig, core_defaults
from .index import CertificateIndexHolder, CertificateRecord, index_certs
from .library import TLSCapabilities, TLSLibraryError, detect_capabilities
from .manager import (
    CertManager,
    create_context,
    find_host_cert,
    get_cert_manager,
    reload_ssl_config,
)
from .resolver import CredentialPair, CredentialResolver
from .settings import ConfigStore, get_config_store, clear_config_store_cache
from .sslconfig import SSLConfig, merge_overrides

__all__ = [
    "CertManager",
    "CertificateIndexHolder",
    "CertificateRecord",
    "ConfigStore",
    "ContextBuilder",
    "CredentialPair",
    "CredentialResolver",
    "ResolvedContextConfig",
    "SSLConfig",
    "TLSCapabilities",
    "TLSLibraryError",
    "clear_config_store_cache",
    "core_defaults",
    "create_context",
    "detect_capabilities",
    "find_host_cert",
    "get_cert_manager",
    "get_config_store",
    "index_certs",
    "merge_overrides",
    "reload_ssl_config",
]
