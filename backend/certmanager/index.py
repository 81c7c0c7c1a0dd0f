"""
Certificate index.

Walks the certificate root, parses candidate certificate files and maps every
identity they cover to the files and service scopes that cover it. The index
is a point-in-time snapshot: it is rebuilt wholesale and swapped in, never
updated in place.
"""
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Mapping, Optional

from .identities import get_identities
from .library import load_certificate


logger = logging.getLogger(__name__)

PEM_CERTIFICATE_HEADER = "-----BEGIN CERTIFICATE-----"
DEFAULT_DEPTH_LIMIT = 3

# identity -> file path -> service scopes
CertificateIndex = Mapping[str, Mapping[str, frozenset[str]]]


@dataclass(frozen=True)
class CertificateRecord:
    """One parsed certificate file."""

    path: str
    not_before: datetime
    not_after: datetime
    identities: Mapping[str, frozenset[str]]

    @classmethod
    def from_pem(cls, path: str, data: bytes) -> "CertificateRecord":
        """Parse PEM data. Raises if it is not a well-formed certificate."""
        cert = load_certificate(data)
        return cls(
            path=path,
            not_before=cert.not_valid_before_utc,
            not_after=cert.not_valid_after_utc,
            identities={
                name: frozenset(services)
                for name, services in get_identities(cert).items()
            },
        )

    def valid_at(self, when: datetime) -> bool:
        """Check whether the certificate is within its validity window."""
        return self.not_before <= when <= self.not_after


def is_candidate(filename: str) -> bool:
    """Check whether a file name follows a certificate naming convention."""
    return filename.endswith(".crt") or filename == "fullchain.pem"


def read_certificate(path: str) -> Optional[CertificateRecord]:
    """Read and parse one candidate file, or None if it is not a certificate."""
    try:
        with open(path, "rb") as f:
            first_line = f.readline().rstrip(b"\r\n")
            if first_line != PEM_CERTIFICATE_HEADER.encode("ascii"):
                return None
            f.seek(0)
            data = f.read()
    except OSError as e:
        logger.debug("[CERT-INDEX] Cannot read %s: %s", path, e)
        return None

    # Malformed extensions surface as x509 errors that are not ValueErrors
    try:
        return CertificateRecord.from_pem(path, data)
    except Exception as e:
        logger.debug("[CERT-INDEX] Suppressed parse error for %s: %s", path, e)
        return None


def _scan(
    directory: str,
    files_by_name: dict[str, dict[str, frozenset[str]]],
    depth_limit: int,
    now: datetime,
) -> None:
    if depth_limit <= 0:
        return

    try:
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda entry: entry.name)
    except OSError as e:
        logger.debug("[CERT-INDEX] Skipping unreadable directory %s: %s", directory, e)
        return

    for entry in entries:
        full = directory + "/" + entry.name
        try:
            is_dir = entry.is_dir()
            is_file = entry.is_file()
        except OSError as e:
            logger.debug("[CERT-INDEX] Cannot stat %s: %s", full, e)
            continue

        if is_dir:
            if not entry.name.startswith("."):
                _scan(full, files_by_name, depth_limit - 1, now)
        elif is_file and is_candidate(entry.name):
            record = read_certificate(full)
            if record is None:
                continue
            if not record.valid_at(now):
                logger.debug("[CERT-INDEX] Ignoring expired certificate %s", full)
                continue
            logger.debug("[CERT-INDEX] Found certificate %s with identities %s", full, record.identities)
            for name, services in record.identities.items():
                files_by_name.setdefault(name, {})[full] = services


def index_certs(
    root: str,
    depth_limit: int = DEFAULT_DEPTH_LIMIT,
    now: Optional[datetime] = None,
) -> CertificateIndex:
    """
    Build a certificate index by scanning a directory tree.

    Args:
        root: Certificate root directory
        depth_limit: Number of directory levels to visit (0 visits nothing)
        now: Time certificates must be valid at (default: current time)

    Returns:
        Mapping of identity -> {file path: service scopes}
    """
    files_by_name: dict[str, dict[str, frozenset[str]]] = {}
    _scan(root.rstrip("/") or "/", files_by_name, depth_limit, now or datetime.now(timezone.utc))
    logger.debug("[CERT-INDEX] Certificate index for %s: %s", root, files_by_name)
    return files_by_name


class CertificateIndexHolder:
    """Holds the current index and replaces it atomically on rebuild."""

    def __init__(self, depth_limit: int = DEFAULT_DEPTH_LIMIT):
        # (root, index), swapped as one reference
        self._current: Optional[tuple[str, CertificateIndex]] = None
        self.depth_limit = depth_limit

    @property
    def is_built(self) -> bool:
        return self._current is not None

    def get(self, root: str) -> CertificateIndex:
        """Return the current index, building it on first use."""
        current = self._current
        if current is None or current[0] != root:
            return self.rebuild(root)
        return current[1]

    def rebuild(self, root: str) -> CertificateIndex:
        """Scan root into a fresh index and swap it in."""
        index = index_certs(root, self.depth_limit)
        self._current = (root, index)
        logger.info("[CERT-INDEX] Indexed %d identities under %s", len(index), root)
        return index

    def invalidate(self) -> None:
        """Drop the current index so the next lookup rebuilds it."""
        self._current = None
