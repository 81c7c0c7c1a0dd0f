"""
Certificate/key discovery for hosts and services.

Lookups consult the certificate index first, then the per-host or
per-service configuration, then the legacy file naming conventions under the
certificate root. Host lookups climb the domain suffix chain until something
matches.
"""
import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .identities import ANY_SERVICE
from .index import CertificateIndex, CertificateIndexHolder
from .settings import ConfigSnapshot, ConfigStore, GLOBAL_SECTION


logger = logging.getLogger(__name__)

# Naming conventions tried under a base path, in order. An empty suffix means
# the base path itself is the certificate (and possibly the key).
CRT_TRY = ("", "/{name}.crt", "/{name}/fullchain.pem", "/{name}.pem")
KEY_TRY = ("", "/{name}.key", "/{name}/privkey.pem", "/{name}.pem")


@dataclass(frozen=True)
class CredentialPair:
    """A certificate file and the private key file that goes with it."""

    certificate: str
    key: Optional[str]

    def as_layer(self) -> dict[str, str]:
        """Config layer form of this pair."""
        layer = {"certificate": self.certificate}
        if self.key:
            layer["key"] = self.key
        return layer


def derive_key_path(path: str) -> str:
    """Derive the key file name that shares a stem with a certificate file."""
    if path.endswith(".crt"):
        return path[:-4] + ".key"
    if path.endswith("/fullchain.pem"):
        return path[:-len("fullchain.pem")] + "privkey.pem"
    return path


class CredentialResolver:
    """Finds certificate/key pairs by identity."""

    def __init__(self, store: ConfigStore, index: CertificateIndexHolder):
        self.store = store
        self.index = index

    def certificate_root(self, snapshot: Optional[ConfigSnapshot] = None) -> str:
        snapshot = snapshot or self.store.snapshot()
        return snapshot.resolve_path(snapshot.certificates)

    def current_index(self, snapshot: Optional[ConfigSnapshot] = None) -> CertificateIndex:
        """Get the index for the configured certificate root, building it if needed."""
        return self.index.get(self.certificate_root(snapshot))

    def find_cert(
        self,
        user_certs: Optional[str],
        name: str,
        snapshot: Optional[ConfigSnapshot] = None,
    ) -> Optional[CredentialPair]:
        """
        Search a base path for a certificate and key for name.

        Args:
            user_certs: Base path (default: the global certificate root)
            name: Host or service name substituted into the conventions
            snapshot: Configuration snapshot to read from

        Returns:
            The first convention where both files exist, or None
        """
        snapshot = snapshot or self.store.snapshot()
        certs = snapshot.resolve_path(user_certs or snapshot.certificates)
        if len(certs) > 1:
            certs = certs.rstrip("/")
        logger.debug("[CERT-RESOLVER] Searching %s for a key and certificate for %s...", certs, name)

        for crt_try, key_try in zip(CRT_TRY, KEY_TRY):
            crt_path = certs + crt_try.format(name=name)
            key_path = certs + key_try.format(name=name)

            if not os.path.isfile(crt_path):
                continue
            if crt_path == key_path:
                key_path = derive_key_path(key_path)
            if os.path.isfile(key_path):
                logger.debug(
                    "[CERT-RESOLVER] Selecting certificate %s with key %s for %s",
                    crt_path, key_path, name,
                )
                return CredentialPair(certificate=crt_path, key=key_path)

        logger.debug("[CERT-RESOLVER] No certificate/key found for %s", name)
        return None

    def _find_at_level(
        self,
        host: str,
        snapshot: ConfigSnapshot,
        index: CertificateIndex,
    ) -> Optional[CredentialPair]:
        keyless = None
        for cert_filename, services in index.get(host.lower(), {}).items():
            if ANY_SERVICE not in services:
                continue
            logger.debug("[CERT-RESOLVER] Using cert %s from index", cert_filename)
            pair = self.find_cert(cert_filename, host, snapshot)
            if pair:
                return pair
            if keyless is None:
                keyless = CredentialPair(certificate=cert_filename, key=None)

        pair = self.find_cert(snapshot.get(host, "certificate"), host, snapshot)
        if pair:
            return pair

        if keyless is not None:
            logger.warning("[CERT-RESOLVER] Found certificate %s for %s but no matching key", keyless.certificate, host)
        return keyless

    def find_host_cert(
        self,
        host: Optional[str],
        snapshot: Optional[ConfigSnapshot] = None,
    ) -> Optional[CredentialPair]:
        """
        Find a certificate/key pair for a hostname.

        Tries the host itself, then each parent domain (a.b.c, b.c, c).
        """
        if not host:
            return None
        snapshot = snapshot or self.store.snapshot()
        index = self.current_index(snapshot)

        name = host
        while name:
            pair = self._find_at_level(name, snapshot, index)
            if pair:
                return pair
            _, _, name = name.partition(".")
        return None

    def find_service_cert(
        self,
        service: str,
        port: Optional[int] = None,
        snapshot: Optional[ConfigSnapshot] = None,
    ) -> Optional[CredentialPair]:
        """
        Find a certificate/key pair for a service.

        Any indexed certificate scoped to the service (or to any service) is
        used first; which one wins when several match is unspecified.
        """
        snapshot = snapshot or self.store.snapshot()
        index = self.current_index(snapshot)

        for certs in index.values():
            for cert_filename, services in certs.items():
                if service in services or ANY_SERVICE in services:
                    logger.debug("[CERT-RESOLVER] Using cert %s from index", cert_filename)
                    pair = self.find_cert(cert_filename, service, snapshot)
                    if pair:
                        return pair

        cert_config = snapshot.get(GLOBAL_SECTION, f"{service}_certificate")
        if isinstance(cert_config, Mapping):
            cert_config = (
                cert_config.get(str(port))
                or cert_config.get(port)
                or cert_config.get("default")
            )
        if cert_config is not None and not isinstance(cert_config, str):
            logger.warning("[CERT-RESOLVER] Ignoring non-string %s_certificate setting", service)
            cert_config = None
        return self.find_cert(cert_config, service, snapshot)
