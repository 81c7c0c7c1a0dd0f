"""
Certificate manager API application.

Run: cd backend && uvicorn main:app
"""
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI

from certmanager.manager import get_cert_manager
from certmanager.routes import router as certificates_router


logging.basicConfig(
    level=os.environ.get("CERTMANAGER_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("[CERT-API] Building certificate index")
    get_cert_manager().reload_ssl_config()
    yield


app = FastAPI(title="certmanager", lifespan=lifespan)
app.include_router(certificates_router)


@app.get("/api/health")
async def health_check():
    """Health check endpoint returning version and TLS library status."""
    manager = get_cert_manager()
    return {
        "status": "healthy",
        "service": "certmanager",
        "version": os.environ.get("CERTMANAGER_VERSION", "unknown"),
        "tls_library": manager.capabilities.openssl_version or None,
    }
