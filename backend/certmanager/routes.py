"""
Certificate API endpoints.

Provides REST endpoints for:
- Inspecting the certificate index
- Reloading configuration and rebuilding the index
- Looking up the certificate/key pair for a host or service
- Dry-run TLS context creation with diagnostics
"""
import logging
from typing import Any, Literal, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from .manager import get_cert_manager


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/certificates", tags=["Certificates"])


# ============================================================================
# Request/Response Models
# ============================================================================


class CredentialPairResponse(BaseModel):
    """Certificate and key files found for an identity."""

    identity: str
    certificate: str
    key: Optional[str] = None


class ReloadResponse(BaseModel):
    """Result of a configuration reload."""

    success: bool
    identities: int
    files: int


class ContextCheckRequest(BaseModel):
    """Request to build (and discard) a TLS context."""

    identity: str
    mode: Literal["server", "client"] = "server"
    overrides: list[dict[str, Any]] = Field(default_factory=list)


class ContextCheckResponse(BaseModel):
    """Outcome of a context build."""

    success: bool
    diagnostic: Optional[str] = None
    certificate: Optional[str] = None
    key: Optional[str] = None
    protocol: Optional[str] = None
    ciphers: Optional[str] = None
    options: list[str] = Field(default_factory=list)
    verify: list[str] = Field(default_factory=list)


# ============================================================================
# Index Endpoints
# ============================================================================


@router.get("/index")
async def get_certificate_index():
    """Get the certificate index: identity -> {file: service scopes}."""
    return get_cert_manager().index_snapshot()


@router.post("/reload", response_model=ReloadResponse)
async def reload_certificates():
    """Reload configuration and rebuild the certificate index."""
    manager = get_cert_manager()
    manager.reload_ssl_config()
    index = manager.index_snapshot()
    files = {path for entries in index.values() for path in entries}
    logger.info("[CERT-API] Reloaded, %d identities in %d files", len(index), len(files))
    return ReloadResponse(success=True, identities=len(index), files=len(files))


# ============================================================================
# Lookup Endpoints
# ============================================================================


@router.get("/lookup/{host}", response_model=CredentialPairResponse)
async def lookup_host(host: str):
    """Find the certificate/key pair for a hostname."""
    pair = get_cert_manager().find_host_cert(host)
    if pair is None:
        raise HTTPException(status_code=404, detail=f"No certificate found for {host}")
    return CredentialPairResponse(identity=host, certificate=pair.certificate, key=pair.key)


@router.get("/service/{service}/{port}", response_model=CredentialPairResponse)
async def lookup_service(service: str, port: int):
    """Find the certificate/key pair for a service on a port."""
    pair = get_cert_manager().find_service_cert(service, port)
    if pair is None:
        raise HTTPException(status_code=404, detail=f"No certificate found for {service} port {port}")
    return CredentialPairResponse(identity=f"{service} port {port}", certificate=pair.certificate, key=pair.key)


# ============================================================================
# Context Endpoints
# ============================================================================


@router.post("/context-check", response_model=ContextCheckResponse)
async def check_context(request: ContextCheckRequest):
    """
    Build a TLS context for an identity and report the outcome.

    The context itself is discarded; this only validates the configuration.
    """
    ctx, diagnostic, config = get_cert_manager().create_context(
        request.identity, request.mode, request.overrides,
    )
    response = ContextCheckResponse(success=ctx is not None, diagnostic=diagnostic)
    if config is not None:
        response.certificate = config.certificate
        response.key = config.key
        response.protocol = config.protocol
        response.ciphers = config.ciphers
        response.options = list(config.options)
        response.verify = list(config.verify)
    return response
