"""
TLS context construction.

Merges built-in defaults, discovered credentials, global settings and caller
overrides, resolves paths against the config root, then asks the TLS library
for a context. Failures come back as a diagnostic, never as an exception.
"""
import logging
import re
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping, Optional, Union

from . import library
from .diagnostics import describe_error
from .library import TLSCapabilities, TLSLibraryError
from .resolver import CredentialResolver
from .settings import ConfigSnapshot, ConfigStore
from .sslconfig import SSLConfig, merge_overrides

if TYPE_CHECKING:
    import ssl


logger = logging.getLogger(__name__)

# Options whose values are file system paths
PATH_OPTIONS = ("key", "certificate", "cafile", "capath", "dhparam")

_SERVICE_IDENTITY_RE = re.compile(r"^(\S+) port (\d+)$")

DEFAULT_CIPHERS = [  # Enabled ciphers in order of preference:
    "HIGH+kEECDH",  # Ephemeral Elliptic curve Diffie-Hellman key exchange
    "HIGH+kEDH",  # Ephemeral Diffie-Hellman key exchange, if a 'dhparam' file is set
    "HIGH",  # Other "High strength" ciphers
    # Disabled cipher suites:
    "!PSK",  # Pre-Shared Key
    "!SRP",  # Secure Remote Password
    "!3DES",  # 3DES - slow and of questionable security
    "!aNULL",  # Ciphers that does not authenticate the connection
]

DEFAULT_CURVES = ["X25519", "P-384", "P-256", "P-521"]


def core_defaults(capabilities: TLSCapabilities, ssl_compression: bool = False) -> dict[str, Any]:
    """
    Build the built-in default layer.

    Compatibility options are only enabled when the library supports them.
    """
    return {
        "capath": "/etc/ssl/certs",
        "depth": 9,
        "protocol": "tlsv1+",
        "verify": "none",
        "options": {
            "cipher_server_preference": capabilities.has_option("cipher_server_preference"),
            "no_ticket": capabilities.has_option("no_ticket"),
            "no_compression": capabilities.has_option("no_compression") and not ssl_compression,
            "single_dh_use": capabilities.has_option("single_dh_use"),
            "single_ecdh_use": capabilities.has_option("single_ecdh_use"),
        },
        # A single curve where the library cannot take a list
        "curve": "secp384r1" if capabilities.ec and not capabilities.curves_list else None,
        "curveslist": list(DEFAULT_CURVES) if capabilities.curves_list else None,
        "ciphers": list(DEFAULT_CIPHERS),
    }


def parse_identity(identity: str) -> tuple[Optional[str], Optional[int]]:
    """Split "<service> port <port>" into (service, port); (None, None) for hosts."""
    match = _SERVICE_IDENTITY_RE.match(identity)
    if not match:
        return None, None
    return match.group(1), int(match.group(2))


@dataclass
class ResolvedContextConfig:
    """Fully merged, path-resolved configuration for one context."""

    mode: str = "server"
    protocol: Optional[str] = None
    verify: list[str] = field(default_factory=list)
    depth: Optional[int] = None
    options: list[str] = field(default_factory=list)
    ciphers: Optional[str] = None
    certificate: Optional[str] = None
    key: Optional[str] = None
    cafile: Optional[str] = None
    capath: Optional[str] = None
    dhparam_file: Optional[str] = None
    dhparam: Optional[Callable[[], bytes]] = None
    curve: Optional[str] = None
    curveslist: Optional[list[str]] = None
    alpn: Optional[list[str]] = None
    password: Optional[Union[str, bytes, Callable[[], Any]]] = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_final(cls, final: Mapping[str, Any]) -> "ResolvedContextConfig":
        """Build from SSLConfig.final() output; unknown keys go to extra."""
        known = {f for f in cls.__dataclass_fields__ if f != "extra"}
        values = {k: v for k, v in final.items() if k in known}
        extra = {k: v for k, v in final.items() if k not in known}
        if isinstance(values.get("dhparam"), str):
            values["dhparam_file"] = values.pop("dhparam")
        if isinstance(values.get("alpn"), str):
            values["alpn"] = [values["alpn"]]
        return cls(**values, extra=extra)

    def to_dict(self) -> dict[str, Any]:
        """Plain-dict form, without the callables."""
        data = asdict(self)
        data.pop("dhparam")
        data.pop("password")
        return data


def _password_callback(host: str) -> Callable[[], bytes]:
    # Keys cannot be unlocked interactively when daemonized
    def password() -> bytes:
        logger.error(
            "[TLS-CONTEXT] Encrypted certificate for %s requires 'ssl' 'password' to be set in config",
            host,
        )
        return b""
    return password


def _dhparam_supplier(data: bytes) -> Callable[[], bytes]:
    def dhparam() -> bytes:
        return data
    return dhparam


ContextResult = tuple[Optional["ssl.SSLContext"], Optional[str], Optional[ResolvedContextConfig]]


class ContextBuilder:
    """Creates TLS contexts for hosts and services."""

    def __init__(
        self,
        store: ConfigStore,
        resolver: CredentialResolver,
        capabilities: TLSCapabilities,
    ):
        self.store = store
        self.resolver = resolver
        self.capabilities = capabilities

    def _discover(self, identity: str, snapshot: ConfigSnapshot) -> Optional[Mapping[str, str]]:
        service, port = parse_identity(identity)
        if service:
            logger.debug("[TLS-CONTEXT] Automatically locating certs for service %s on port %s", service, port)
            pair = self.resolver.find_service_cert(service, port, snapshot)
        else:
            logger.debug("[TLS-CONTEXT] Automatically locating certs for host %s", identity)
            pair = self.resolver.find_host_cert(identity, snapshot)
        return pair.as_layer() if pair else None

    def merge(
        self,
        identity: str,
        mode: str,
        overrides: Iterable[Optional[Mapping[str, Any]]] = (),
        snapshot: Optional[ConfigSnapshot] = None,
    ) -> dict[str, Any]:
        """
        Merge every configuration layer for identity.

        Order: defaults, discovered credentials, mode and password callback,
        the identity's own "ssl" section, global "ssl" settings, then caller
        overrides with the FIRST override taking precedence over later ones.
        """
        snapshot = snapshot or self.store.snapshot()
        cfg = SSLConfig()
        cfg.apply(core_defaults(self.capabilities, snapshot.global_settings.ssl_compression))
        cfg.apply(self._discover(identity, snapshot))
        cfg.apply({"mode": mode, "password": _password_callback(identity)})
        cfg.apply(snapshot.host_settings(identity).ssl)
        cfg.apply(snapshot.global_ssl)
        merge_overrides(cfg, overrides)
        return cfg.final()

    def _resolve_paths(self, final: dict[str, Any], snapshot: ConfigSnapshot) -> None:
        for option in PATH_OPTIONS:
            value = final.get(option)
            if isinstance(value, str):
                final[option] = snapshot.resolve_path(value)
            else:
                final.pop(option, None)

    def create_context(
        self,
        identity: str,
        mode: str,
        overrides: Iterable[Optional[Mapping[str, Any]]] = (),
    ) -> ContextResult:
        """
        Build a TLS context for a host or "<service> port <port>" identity.

        Args:
            identity: Hostname or service identity
            mode: "server" or "client"
            overrides: Caller layers; earlier entries take precedence

        Returns:
            Tuple of (context, diagnostic, effective configuration). The
            context is None exactly when the diagnostic is set.
        """
        snapshot = self.store.snapshot()
        final = self.merge(identity, mode, overrides, snapshot)

        if mode == "server":
            if not final.get("certificate"):
                logger.info("[TLS-CONTEXT] No certificate present in SSL/TLS configuration for %s. SNI will be required.", identity)
            if final.get("certificate") and not final.get("key"):
                message = f"No key present in SSL/TLS configuration for {identity}"
                logger.error("[TLS-CONTEXT] %s", message)
                return None, message, ResolvedContextConfig.from_final(final)

        self._resolve_paths(final, snapshot)

        dhparam_file = final.get("dhparam")
        if dhparam_file:
            try:
                with open(dhparam_file, "rb") as f:
                    data = f.read()
            except OSError as e:
                message = f"Could not open DH parameters: {e.strerror or e}"
                logger.error("[TLS-CONTEXT] %s (for %s)", message, identity)
                return None, message, ResolvedContextConfig.from_final(final)
            final["dhparam"] = _dhparam_supplier(data)

        config = ResolvedContextConfig.from_final(final)
        config.dhparam_file = dhparam_file

        try:
            ctx = library.new_context(config)
            # Re-apply the cipher list after creation in case it was ignored
            if config.ciphers:
                ok, err = library.set_cipher_list(ctx, config.ciphers)
                if not ok:
                    raise TLSLibraryError(None, err)
        except TLSLibraryError as e:
            return None, describe_error(e, identity, config.to_dict()), config

        logger.debug("[TLS-CONTEXT] Created %s context for %s", mode, identity)
        return ctx, None, config
