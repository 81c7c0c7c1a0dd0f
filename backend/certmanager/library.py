"""
TLS library bindings.

Wraps the ssl module (context allocation) and cryptography (certificate and
DH parameter parsing) behind the handful of calls the context builder needs,
and raises TLSLibraryError with a structured subject/reason on failure.
"""
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from cryptography import x509
from cryptography.hazmat.primitives import serialization

# The interpreter may be built without OpenSSL
try:
    import ssl
except ImportError:
    ssl = None  # type: ignore

if TYPE_CHECKING:
    from .builder import ResolvedContextConfig


logger = logging.getLogger(__name__)

HAS_SSL = ssl is not None

# Option name -> ssl module flag
OPTION_FLAGS = {
    "cipher_server_preference": "OP_CIPHER_SERVER_PREFERENCE",
    "no_ticket": "OP_NO_TICKET",
    "no_compression": "OP_NO_COMPRESSION",
    "single_dh_use": "OP_SINGLE_DH_USE",
    "single_ecdh_use": "OP_SINGLE_ECDH_USE",
    "no_renegotiation": "OP_NO_RENEGOTIATION",
    "ignore_unexpected_eof": "OP_IGNORE_UNEXPECTED_EOF",
}

# Protocol name -> ssl.TLSVersion member
PROTOCOL_VERSIONS = {
    "tlsv1": "TLSv1",
    "tlsv1_1": "TLSv1_1",
    "tlsv1_2": "TLSv1_2",
    "tlsv1_3": "TLSv1_3",
}


class TLSLibraryError(Exception):
    """A failure reported while allocating or configuring a context."""

    def __init__(self, subject: Optional[str], reason: Optional[str]):
        self.subject = subject
        self.reason = reason
        if subject:
            message = f"error loading {subject} ({reason or '(null)'})"
        else:
            message = reason or "invalid ssl config"
        super().__init__(message)


@dataclass(frozen=True)
class TLSCapabilities:
    """What the linked TLS library supports, probed once at startup."""

    available: bool
    openssl_version: str
    ec: bool
    curves_list: bool
    protocols: frozenset[str]
    options: frozenset[str]

    def has_option(self, name: str) -> bool:
        return name in self.options


def detect_capabilities() -> TLSCapabilities:
    """Probe the ssl module for supported features."""
    if ssl is None:
        return TLSCapabilities(
            available=False,
            openssl_version="",
            ec=False,
            curves_list=False,
            protocols=frozenset(),
            options=frozenset(),
        )

    protocols = set()
    for name, member in PROTOCOL_VERSIONS.items():
        if getattr(ssl, "HAS_" + member, False):
            protocols.add(name)

    options = {name for name, flag in OPTION_FLAGS.items() if hasattr(ssl, flag)}

    capabilities = TLSCapabilities(
        available=True,
        openssl_version=ssl.OPENSSL_VERSION,
        ec=bool(getattr(ssl, "HAS_ECDH", False)),
        # ssl only exposes set_ecdh_curve(), a single curve
        curves_list=False,
        protocols=frozenset(protocols),
        options=frozenset(options),
    )
    logger.debug("[TLS-CONTEXT] TLS library capabilities: %s", capabilities)
    return capabilities


def load_certificate(data: bytes) -> x509.Certificate:
    """Parse a PEM certificate. Raises ValueError on malformed input."""
    return x509.load_pem_x509_certificate(data)


def _parse_protocol(protocol: str) -> tuple[Optional["ssl.TLSVersion"], Optional["ssl.TLSVersion"]]:
    """Turn "tlsv1_2+" into (minimum, maximum) versions."""
    name = protocol.lower()
    or_higher = name.endswith("+")
    name = name.rstrip("+")
    if name in ("sslv23", "any", ""):
        return None, None
    member = PROTOCOL_VERSIONS.get(name)
    if member is None:
        raise TLSLibraryError(None, f"Unsupported protocol: {protocol}")
    version = getattr(ssl.TLSVersion, member)
    return version, (None if or_higher else version)


def _apply_protocol(ctx: "ssl.SSLContext", protocol: Optional[str]) -> None:
    if not protocol:
        return
    minimum, maximum = _parse_protocol(protocol)
    if minimum is not None:
        floor = ctx.minimum_version
        if floor.value > 0 and minimum.value < floor.value:
            logger.debug(
                "[TLS-CONTEXT] Keeping minimum protocol %s (requested %s)",
                floor.name, minimum.name,
            )
        else:
            ctx.minimum_version = minimum
    if maximum is not None:
        if maximum.value < ctx.minimum_version.value:
            raise TLSLibraryError(None, f"Protocol {protocol} is below the minimum supported version")
        ctx.maximum_version = maximum


def _verify_mode(verify: list[str]) -> "ssl.VerifyMode":
    if "peer" not in verify:
        return ssl.CERT_NONE
    if "fail_if_no_peer_cert" in verify:
        return ssl.CERT_REQUIRED
    return ssl.CERT_OPTIONAL


def _reason(err: Exception) -> Optional[str]:
    # SSLError only carries .reason when raised from the OpenSSL error queue
    return getattr(err, "reason", None)


def _read(path: str, subject: str) -> bytes:
    try:
        return Path(path).read_bytes()
    except OSError as e:
        raise TLSLibraryError(subject, e.strerror or str(e)) from e


def _load_cert_chain(ctx: "ssl.SSLContext", config: "ResolvedContextConfig") -> None:
    cert_data = _read(config.certificate, "certificate")
    try:
        load_certificate(cert_data)
    except ValueError as e:
        raise TLSLibraryError("certificate", "no start line") from e

    keyfile = config.key or config.certificate
    _read(keyfile, "private key")

    try:
        ctx.load_cert_chain(config.certificate, keyfile, password=config.password)
    except ssl.SSLError as e:
        raise TLSLibraryError("private key", _reason(e) or "system lib") from e
    except OSError as e:
        raise TLSLibraryError("private key", e.strerror or "system lib") from e


def _load_verify_locations(ctx: "ssl.SSLContext", config: "ResolvedContextConfig") -> None:
    cafile = config.cafile
    capath = config.capath
    if capath and not os.path.isdir(capath):
        logger.debug("[TLS-CONTEXT] CA directory %s does not exist, skipping", capath)
        capath = None
    if not cafile and not capath:
        return
    try:
        ctx.load_verify_locations(cafile=cafile, capath=capath)
    except ssl.SSLError as e:
        raise TLSLibraryError("CA certificates", _reason(e) or "system lib") from e
    except OSError as e:
        raise TLSLibraryError("CA certificates", e.strerror or str(e)) from e


def _load_dh_params(ctx: "ssl.SSLContext", config: "ResolvedContextConfig") -> None:
    data = config.dhparam()
    try:
        serialization.load_pem_parameters(data)
    except (ValueError, TypeError) as e:
        raise TLSLibraryError("DH parameters", "no start line") from e
    try:
        ctx.load_dh_params(config.dhparam_file)
    except ssl.SSLError as e:
        raise TLSLibraryError("DH parameters", _reason(e) or "system lib") from e
    except OSError as e:
        raise TLSLibraryError("DH parameters", e.strerror or str(e)) from e


def new_context(config: "ResolvedContextConfig") -> "ssl.SSLContext":
    """
    Allocate and configure an SSLContext.

    Args:
        config: Fully merged, path-resolved configuration

    Returns:
        Configured context

    Raises:
        TLSLibraryError: if any part of the configuration cannot be applied
    """
    if ssl is None:
        raise TLSLibraryError(None, "Encryption support (the ssl module) was not found")

    if config.mode == "server":
        ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    else:
        ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)

    _apply_protocol(ctx, config.protocol)

    verify_mode = _verify_mode(config.verify)
    if verify_mode == ssl.CERT_NONE:
        ctx.check_hostname = False
    ctx.verify_mode = verify_mode

    for option in config.options:
        flag = OPTION_FLAGS.get(option)
        if flag is None or not hasattr(ssl, flag):
            logger.debug("[TLS-CONTEXT] Ignoring unsupported option %s", option)
            continue
        ctx.options |= getattr(ssl, flag)

    if config.certificate:
        _load_cert_chain(ctx, config)

    _load_verify_locations(ctx, config)

    if config.dhparam is not None and config.dhparam_file:
        _load_dh_params(ctx, config)

    if config.curve and getattr(ssl, "HAS_ECDH", False):
        try:
            ctx.set_ecdh_curve(config.curve)
        except ValueError as e:
            raise TLSLibraryError(None, f"Unknown curve: {config.curve}") from e

    if config.ciphers:
        ok, err = set_cipher_list(ctx, config.ciphers)
        if not ok:
            raise TLSLibraryError(None, err)

    if config.alpn:
        ctx.set_alpn_protocols(list(config.alpn))

    return ctx


def set_cipher_list(ctx: "ssl.SSLContext", ciphers: str) -> tuple[bool, Optional[str]]:
    """
    Apply a cipher list to an existing context.

    Returns:
        Tuple of (success, error_message)
    """
    try:
        ctx.set_ciphers(ciphers)
    except ssl.SSLError as e:
        return False, _reason(e) or str(e)
    return True, None
