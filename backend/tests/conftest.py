"""
Shared fixtures: config stores, managers and an API client.
"""
from typing import Optional

import httpx
import pytest
import pytest_asyncio

from certmanager.manager import CertManager
from certmanager.settings import ConfigStore


@pytest.fixture
def config_root(tmp_path):
    """Config directory holding a certs/ tree."""
    (tmp_path / "certs").mkdir()
    return tmp_path


@pytest.fixture
def certs_dir(config_root):
    return config_root / "certs"


@pytest.fixture
def make_store(config_root):
    """Factory for a ConfigStore over literal sections."""
    def _make(data: Optional[dict] = None) -> ConfigStore:
        return ConfigStore(
            config_file=config_root / "certmanager.json",
            data=data or {},
            config_root=str(config_root),
        )
    return _make


@pytest.fixture
def make_manager(make_store):
    """Factory for a CertManager over literal sections."""
    managers = []

    def _make(data: Optional[dict] = None) -> CertManager:
        manager = CertManager(store=make_store(data))
        managers.append(manager)
        return manager

    yield _make
    for manager in managers:
        manager.close()


@pytest_asyncio.fixture
async def async_client(make_manager, monkeypatch):
    """httpx client bound to the API app with a per-test manager."""
    from main import app
    import certmanager.routes

    manager = make_manager()
    monkeypatch.setattr(certmanager.routes, "get_cert_manager", lambda: manager)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        client.manager = manager
        yield client
