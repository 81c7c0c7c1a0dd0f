"""
Unit tests for the certificate manager.
Tests reload behaviour, the no-encryption stub and the shared instance.
"""
from unittest.mock import patch

import certmanager.manager
from certmanager.library import TLSCapabilities
from certmanager.manager import (
    NO_ENCRYPTION_SUPPORT,
    CertManager,
    get_cert_manager,
    reset_cert_manager,
)
from tests.certfactory import write_pair


class TestReload:
    """Tests for reload_ssl_config()."""

    def test_reload_is_idempotent(self, make_manager, certs_dir):
        write_pair(certs_dir / "example.com.crt", certs_dir / "example.com.key", names=("example.com",))
        manager = make_manager()

        manager.reload_ssl_config()
        first = manager.index_snapshot()
        manager.reload_ssl_config()

        assert manager.index_snapshot() == first
        assert first == {"example.com": {f"{certs_dir}/example.com.crt": ["*"]}}

    def test_reload_picks_up_new_certificates(self, make_manager, certs_dir):
        manager = make_manager()
        assert manager.index_snapshot() == {}

        write_pair(certs_dir / "example.com.crt", certs_dir / "example.com.key", names=("example.com",))
        assert manager.index_snapshot() == {}
        manager.reload_ssl_config()

        assert "example.com" in manager.index_snapshot()

    def test_reload_follows_certificate_root_change(self, make_manager, config_root):
        write_pair(config_root / "tls" / "example.net.crt", names=("example.net",))
        manager = make_manager()

        manager.store.update({"*": {"certificates": "tls"}})

        assert "example.net" in manager.index_snapshot()

    def test_closed_manager_stops_listening(self, make_manager):
        manager = make_manager()
        manager.close()

        with patch.object(manager.index, "rebuild") as rebuild:
            manager.reload_ssl_config()

        rebuild.assert_not_called()


class TestLookups:
    """Tests for the lookup passthroughs."""

    def test_find_host_cert(self, make_manager, certs_dir):
        write_pair(certs_dir / "example.com.crt", certs_dir / "example.com.key")

        pair = make_manager().find_host_cert("www.example.com")

        assert pair.certificate == f"{certs_dir}/example.com.crt"

    def test_find_service_cert(self, make_manager, certs_dir):
        write_pair(certs_dir / "ldap.crt", certs_dir / "ldap.key", names=(), common_name="LDAP")

        pair = make_manager().find_service_cert("ldap", 636)

        assert pair.key == f"{certs_dir}/ldap.key"

    def test_find_cert(self, make_manager, config_root):
        write_pair(config_root / "other" / "example.com.crt", config_root / "other" / "example.com.key")

        pair = make_manager().find_cert("other", "example.com")

        assert pair.certificate == f"{config_root}/other/example.com.crt"


class TestNoEncryptionSupport:
    """Tests for the stub used when no TLS library is available."""

    def test_stub_result(self, make_store):
        capabilities = TLSCapabilities(
            available=False,
            openssl_version="",
            ec=False,
            curves_list=False,
            protocols=frozenset(),
            options=frozenset(),
        )
        manager = CertManager(store=make_store(), capabilities=capabilities)
        try:
            assert manager.create_context("example.com", "server") == (None, NO_ENCRYPTION_SUPPORT, None)
        finally:
            manager.close()


class TestSharedInstance:
    """Tests for the process-wide manager."""

    def test_get_and_reset(self, make_store, monkeypatch):
        store = make_store()
        monkeypatch.setattr(certmanager.manager, "get_config_store", lambda: store)
        reset_cert_manager()
        try:
            first = get_cert_manager()

            assert get_cert_manager() is first
            assert first.store is store
            reset_cert_manager()
            assert get_cert_manager() is not first
        finally:
            reset_cert_manager()

    def test_module_functions_delegate(self, make_store, certs_dir, monkeypatch):
        write_pair(certs_dir / "example.com.crt", certs_dir / "example.com.key")
        store = make_store()
        monkeypatch.setattr(certmanager.manager, "get_config_store", lambda: store)
        reset_cert_manager()
        try:
            certmanager.manager.reload_ssl_config()
            pair = certmanager.manager.find_host_cert("example.com")
            ctx, diagnostic, _ = certmanager.manager.create_context("example.com", "server")

            assert pair.certificate == f"{certs_dir}/example.com.crt"
            assert ctx is not None
            assert diagnostic is None
        finally:
            reset_cert_manager()
