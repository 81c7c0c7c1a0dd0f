"""
Unit tests for certificate endpoints.

Tests: GET /api/certificates/index, POST /api/certificates/reload,
       GET /api/certificates/lookup/{host},
       GET /api/certificates/service/{service}/{port},
       POST /api/certificates/context-check
Mocks: get_cert_manager() to use a manager over a temporary config root.
"""
import pytest
from unittest.mock import patch

from tests.certfactory import write_pair


class TestCertificateIndex:
    """Tests for GET /api/certificates/index."""

    @pytest.mark.asyncio
    async def test_empty_index(self, async_client):
        """Returns an empty mapping when no certificates exist."""
        response = await async_client.get("/api/certificates/index")

        assert response.status_code == 200
        assert response.json() == {}

    @pytest.mark.asyncio
    async def test_index_contents(self, async_client, certs_dir):
        """Lists each identity with its files and service scopes."""
        write_pair(
            certs_dir / "mail.crt",
            names=("example.com",),
            srv_names=("_imaps.mail.example.com",),
        )

        response = await async_client.get("/api/certificates/index")

        data = response.json()
        assert data["example.com"] == {f"{certs_dir}/mail.crt": ["*"]}
        assert data["mail.example.com"] == {f"{certs_dir}/mail.crt": ["imaps"]}


class TestReload:
    """Tests for POST /api/certificates/reload."""

    @pytest.mark.asyncio
    async def test_reload_rebuilds_index(self, async_client, certs_dir):
        """Certificates added after the first scan appear after a reload."""
        await async_client.get("/api/certificates/index")
        write_pair(certs_dir / "example.com.crt", names=("example.com", "www.example.com"))

        response = await async_client.post("/api/certificates/reload")

        assert response.status_code == 200
        assert response.json() == {"success": True, "identities": 2, "files": 1}

    @pytest.mark.asyncio
    async def test_reload_calls_manager(self, async_client):
        with patch.object(async_client.manager, "reload_ssl_config") as reload:
            response = await async_client.post("/api/certificates/reload")

        assert response.status_code == 200
        reload.assert_called_once()


class TestLookupHost:
    """Tests for GET /api/certificates/lookup/{host}."""

    @pytest.mark.asyncio
    async def test_found(self, async_client, certs_dir):
        write_pair(certs_dir / "example.com.crt", certs_dir / "example.com.key")

        response = await async_client.get("/api/certificates/lookup/www.example.com")

        assert response.status_code == 200
        assert response.json() == {
            "identity": "www.example.com",
            "certificate": f"{certs_dir}/example.com.crt",
            "key": f"{certs_dir}/example.com.key",
        }

    @pytest.mark.asyncio
    async def test_not_found(self, async_client):
        response = await async_client.get("/api/certificates/lookup/example.com")

        assert response.status_code == 404
        assert response.json()["detail"] == "No certificate found for example.com"

    @pytest.mark.asyncio
    async def test_certificate_without_key(self, async_client, certs_dir):
        """An indexed certificate with no key is returned with a null key."""
        write_pair(certs_dir / "example.com.crt", names=("example.com",))

        response = await async_client.get("/api/certificates/lookup/example.com")

        assert response.status_code == 200
        assert response.json()["key"] is None


class TestLookupService:
    """Tests for GET /api/certificates/service/{service}/{port}."""

    @pytest.mark.asyncio
    async def test_found(self, async_client, certs_dir):
        write_pair(certs_dir / "imaps.crt", certs_dir / "imaps.key")

        response = await async_client.get("/api/certificates/service/imaps/993")

        assert response.status_code == 200
        data = response.json()
        assert data["identity"] == "imaps port 993"
        assert data["certificate"] == f"{certs_dir}/imaps.crt"

    @pytest.mark.asyncio
    async def test_not_found(self, async_client):
        response = await async_client.get("/api/certificates/service/imaps/993")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_invalid_port(self, async_client):
        response = await async_client.get("/api/certificates/service/imaps/notaport")

        assert response.status_code == 422


class TestContextCheck:
    """Tests for POST /api/certificates/context-check."""

    @pytest.mark.asyncio
    async def test_success(self, async_client, certs_dir):
        write_pair(certs_dir / "example.com.crt", certs_dir / "example.com.key")

        response = await async_client.post(
            "/api/certificates/context-check",
            json={"identity": "example.com", "mode": "server"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["diagnostic"] is None
        assert data["certificate"] == f"{certs_dir}/example.com.crt"
        assert data["key"] == f"{certs_dir}/example.com.key"
        assert data["protocol"] == "tlsv1+"
        assert data["verify"] == ["none"]

    @pytest.mark.asyncio
    async def test_missing_key(self, async_client, certs_dir):
        write_pair(certs_dir / "example.com.crt", names=("example.com",))

        response = await async_client.post(
            "/api/certificates/context-check",
            json={"identity": "example.com"},
        )

        data = response.json()
        assert data["success"] is False
        assert data["diagnostic"] == "No key present in SSL/TLS configuration for example.com"
        assert data["certificate"] == f"{certs_dir}/example.com.crt"

    @pytest.mark.asyncio
    async def test_overrides_applied(self, async_client):
        response = await async_client.post(
            "/api/certificates/context-check",
            json={
                "identity": "example.com",
                "mode": "client",
                "overrides": [{"protocol": "tlsv1_3"}, {"protocol": "tlsv1_2"}],
            },
        )

        data = response.json()
        assert data["success"] is True
        assert data["protocol"] == "tlsv1_3"

    @pytest.mark.asyncio
    async def test_invalid_mode(self, async_client):
        response = await async_client.post(
            "/api/certificates/context-check",
            json={"identity": "example.com", "mode": "both"},
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_no_encryption_support(self, async_client):
        """The stub result has no configuration to report."""
        with patch.object(
            async_client.manager, "create_context",
            return_value=(None, "Encryption support (the ssl module) was not found", None),
        ):
            response = await async_client.post(
                "/api/certificates/context-check",
                json={"identity": "example.com"},
            )

        data = response.json()
        assert data["success"] is False
        assert data["diagnostic"] == "Encryption support (the ssl module) was not found"
        assert data["certificate"] is None
        assert data["options"] == []
