"""
Translation of TLS library failures into actionable messages.
"""
import logging
import re
from typing import Any, Mapping, Optional

from .library import TLSLibraryError


logger = logging.getLogger(__name__)

_LOAD_ERROR_RE = re.compile(r"^error loading (.+?) \(")
_REASON_RE = re.compile(r"\((.+)\)$")

REMEDIATIONS = {
    "Permission denied": "Check that the permissions allow this server to read this file.",
    "No such file or directory": "Check that the path is correct, and the file exists.",
    "system lib": "Previous error (see logs), or other system error.",
}
NULL_REMEDIATION = "Check that the file exists and the permissions are correct"


def classify_error(err: Any) -> tuple[Optional[str], Optional[str]]:
    """
    Split a library error into (what failed to load, why).

    Structured TLSLibraryError values are read directly; anything else is
    matched against the "error loading <what> (<why>)" message form.
    Returns (None, None) when the error cannot be classified.
    """
    if isinstance(err, TLSLibraryError):
        if not err.subject:
            return None, None
        return err.subject, err.reason or "(null)"

    message = str(err or "")
    match = _LOAD_ERROR_RE.match(message)
    if not match:
        return None, None
    reason = _REASON_RE.search(message)
    return match.group(1), reason.group(1) if reason else None


def remediation(reason: Optional[str], typ: Optional[str], file: str) -> str:
    """Map a failure reason to advice for the administrator."""
    if reason in REMEDIATIONS:
        return REMEDIATIONS[reason]
    if reason == "no start line":
        return f"Check that the file contains a {typ or file}"
    if not reason or reason == "(null)":
        return NULL_REMEDIATION
    return f"Reason: {reason.lower()}"


def describe_error(err: Any, host: str, config: Optional[Mapping[str, Any]] = None) -> str:
    """
    Build and log the diagnostic for a failed context creation.

    Args:
        err: TLSLibraryError, other exception, message string or None
        host: Identity the context was being created for
        config: Effective configuration, used to name the failing file

    Returns:
        Human-readable diagnostic naming host, file and remedy
    """
    err = err or "invalid ssl config"
    config = config or {}
    subject, reason = classify_error(err)

    if subject is None:
        message = f"SSL/TLS: Error initialising for {host}: {err}"
        logger.error("[TLS-CONTEXT] %s", message)
        return message

    typ = None
    file = subject
    if subject == "private key":
        typ = subject
        file = config.get("key") or "your private key"
    elif subject == "certificate":
        typ = subject
        file = config.get("certificate") or "your certificate file"
    elif subject == "DH parameters":
        typ = subject
        file = config.get("dhparam_file") or "your DH parameters file"
    elif subject == "CA certificates":
        typ = subject
        file = config.get("cafile") or config.get("capath") or "your CA certificates"

    message = f"SSL/TLS: Failed to load '{file}': {remediation(reason, typ, file)} (for {host})"
    logger.error("[TLS-CONTEXT] %s", message)
    return message
