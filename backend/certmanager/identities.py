"""
Identity extraction from X.509 certificates.

Maps each name a certificate is valid for to the set of services it may be
used for. "*" means any service on that name.
"""
import logging
import re
from typing import Optional

from cryptography import x509
from cryptography.x509.oid import ExtensionOID, NameOID


logger = logging.getLogger(__name__)

ANY_SERVICE = "*"

# id-on-dnsSRV, RFC 4985
SRV_NAME_OID = x509.ObjectIdentifier("1.3.6.1.5.5.7.8.7")

_SRV_NAME_RE = re.compile(r"^_([^.]+)\.(.+)$")
_HOSTNAME_RE = re.compile(r"^[a-z0-9*_-]+(\.[a-z0-9_-]+)*\.?$")

# DER universal tag for IA5String
_IA5STRING_TAG = 0x16


def _decode_ia5string(der: bytes) -> Optional[str]:
    """Decode a DER IA5String (short or long length form)."""
    if len(der) < 2 or der[0] != _IA5STRING_TAG:
        return None
    length = der[1]
    offset = 2
    if length & 0x80:
        count = length & 0x7F
        length = int.from_bytes(der[2:2 + count], "big")
        offset += count
    value = der[offset:offset + length]
    if len(value) != length:
        return None
    try:
        return value.decode("ascii")
    except UnicodeDecodeError:
        return None


def _add(names: dict[str, set[str]], name: str, service: str) -> None:
    names.setdefault(name.lower().rstrip("."), set()).add(service)


def get_identities(cert: x509.Certificate) -> dict[str, set[str]]:
    """
    Extract the identities a certificate is valid for.

    Args:
        cert: Parsed certificate

    Returns:
        Mapping of name -> set of service scopes
    """
    names: dict[str, set[str]] = {}

    try:
        san = cert.extensions.get_extension_for_oid(
            ExtensionOID.SUBJECT_ALTERNATIVE_NAME
        ).value
    except x509.ExtensionNotFound:
        san = None

    if san is not None:
        for dns_name in san.get_values_for_type(x509.DNSName):
            _add(names, dns_name, ANY_SERVICE)

        for other in san.get_values_for_type(x509.OtherName):
            if other.type_id != SRV_NAME_OID:
                continue
            srv_name = _decode_ia5string(other.value)
            match = _SRV_NAME_RE.match(srv_name or "")
            if match:
                service, name = match.groups()
                _add(names, name, service)
            else:
                logger.debug("[CERT-INDEX] Ignoring malformed SRVName %r", srv_name)

    for attr in cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME):
        value = attr.value if isinstance(attr.value, str) else attr.value.decode("utf-8", "replace")
        if _HOSTNAME_RE.match(value.lower()):
            _add(names, value, ANY_SERVICE)

    return names
