"""Tests for getcerts.services.lifecycle -- step sequencing across collaborators."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from getcerts.acme import IssuedChain
from getcerts.certs.chain import SplitResult
from getcerts.core.errors import (
    AcmeNetworkError,
    ChallengeFailedError,
    CsrMissingError,
    DomainListMissingError,
    KeyReadError,
)
from getcerts.install import Installer
from getcerts.renewal import RenewalDecision
from getcerts.services import CertificateLifecycle

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _intermediate(make_cert) -> bytes:
    return make_cert(
        "Let's Encrypt Authority X3",
        issuer_cn="DST Root CA X3",
        is_ca=True,
    )


def _make_client(make_cert, *, error: Exception | None = None) -> MagicMock:
    client = MagicMock()
    if error is not None:
        client.issue.side_effect = error
    else:
        pem = make_cert("example.com", sans=["example.com", "www.example.com"])
        client.issue.return_value = IssuedChain(
            pem=(pem + _intermediate(make_cert)).decode("ascii"),
            order_url="https://acme.test/order/1",
            identifiers=("example.com", "www.example.com"),
            challenge_tokens=("tok",),
        )
    return client


def _make_lifecycle(settings, client=None, **kwargs) -> CertificateLifecycle:
    factory = MagicMock(return_value=client) if client is not None else None
    return CertificateLifecycle(settings, acme_client_factory=factory, **kwargs)


@pytest.fixture()
def prepared(settings, write_domains, install_key, install_account_key):
    """A domain with key, signing request and account key in place."""
    write_domains({"example.com": ["www"]})
    install_key("example.com")
    install_account_key()
    CertificateLifecycle(settings).create_csr("example.com")
    return settings


# ---------------------------------------------------------------------------
# Domains
# ---------------------------------------------------------------------------


class TestDomains:
    def test_listing(self, settings, write_domains):
        write_domains({"example.com": ["www", "mail"], "example.org": []})
        lifecycle = _make_lifecycle(settings)
        assert lifecycle.list_domains() == ["example.com", "example.org"]
        assert lifecycle.default_domain() == "example.com"
        assert lifecycle.list_sans("example.com") == ["www.example.com", "mail.example.com"]
        assert lifecycle.list_sans("example.org") == []

    def test_missing_domain_list(self, settings):
        with pytest.raises(DomainListMissingError):
            _make_lifecycle(settings).list_domains()


# ---------------------------------------------------------------------------
# Issuance
# ---------------------------------------------------------------------------


class TestGetCertificate:
    def test_issues_and_splits(self, prepared, make_cert):
        client = _make_client(make_cert)
        lifecycle = _make_lifecycle(prepared, client)

        result = lifecycle.get_certificate("example.com")

        assert isinstance(result, SplitResult)
        assert result.leaf.path == prepared.paths.cert_file("example.com")
        assert len(result.intermediates) == 1
        assert not (prepared.paths.cert_dir / "signed_chain.crt").exists()
        client.cleanup.assert_called_once()
        csr = client.issue.call_args[0][0]
        assert csr.is_signature_valid

    def test_not_due_skips_acme(self, prepared, make_cert):
        prepared.paths.cert_file("example.com").write_bytes(make_cert("example.com"))
        client = _make_client(make_cert)
        lifecycle = _make_lifecycle(prepared, client)

        result = lifecycle.get_certificate("example.com")

        assert isinstance(result, RenewalDecision)
        assert result.renew is False
        client.issue.assert_not_called()

    def test_force_renews_valid_certificate(self, prepared, make_cert):
        prepared.paths.cert_file("example.com").write_bytes(make_cert("example.com"))
        client = _make_client(make_cert)
        result = _make_lifecycle(prepared, client).get_certificate("example.com", force=True)
        assert isinstance(result, SplitResult)
        client.issue.assert_called_once()

    def test_challenge_failure_leaves_cert_dir_untouched(self, prepared, make_cert):
        client = _make_client(
            make_cert,
            error=ChallengeFailedError("authorization invalid", domain="example.com"),
        )
        before = sorted(p.name for p in prepared.paths.cert_dir.iterdir())

        with pytest.raises(ChallengeFailedError):
            _make_lifecycle(prepared, client).get_certificate("example.com")

        assert sorted(p.name for p in prepared.paths.cert_dir.iterdir()) == before
        client.cleanup.assert_called_once()

    def test_network_failure_propagates(self, prepared, make_cert):
        client = _make_client(make_cert, error=AcmeNetworkError("unreachable"))
        with pytest.raises(AcmeNetworkError):
            _make_lifecycle(prepared, client).get_certificate("example.com")
        assert not prepared.paths.cert_file("example.com").exists()

    def test_missing_csr(self, settings, write_domains, install_account_key, make_cert):
        write_domains({"example.com": []})
        install_account_key()
        client = _make_client(make_cert)
        with pytest.raises(CsrMissingError):
            _make_lifecycle(settings, client).get_certificate("example.com")
        client.issue.assert_not_called()

    def test_missing_account_key(self, settings, write_domains, install_key, make_cert):
        write_domains({"example.com": []})
        install_key("example.com")
        lifecycle = _make_lifecycle(settings, _make_client(make_cert))
        lifecycle.create_csr("example.com")
        with pytest.raises(KeyReadError):
            lifecycle.get_certificate("example.com")


class TestAutoGenerate:
    def test_creates_missing_key_and_csr(
        self,
        settings,
        write_domains,
        install_account_key,
        make_cert,
    ):
        write_domains({"example.com": ["www"]})
        install_account_key()
        lifecycle = _make_lifecycle(settings, _make_client(make_cert))

        result = lifecycle.auto_generate("example.com")

        assert isinstance(result, SplitResult)
        assert settings.paths.key_file("example.com").is_file()
        assert settings.paths.csr_file("example.com").is_file()

    def test_keeps_existing_csr(self, prepared, make_cert):
        csr_path = prepared.paths.csr_file("example.com")
        original = csr_path.read_bytes()
        _make_lifecycle(prepared, _make_client(make_cert)).auto_generate("example.com")
        assert csr_path.read_bytes() == original


# ---------------------------------------------------------------------------
# Installation and inspection
# ---------------------------------------------------------------------------


class TestInstall:
    def test_install_after_issue(self, prepared, make_cert):
        runner = MagicMock()
        installer = Installer(prepared.paths, prepared.install, runner=runner)
        lifecycle = _make_lifecycle(prepared, _make_client(make_cert), installer=installer)
        lifecycle.get_certificate("example.com")

        report = lifecycle.install("example.com")

        assert [p.name for p in report.aliases] == ["www.example.com.crt"]
        assert lifecycle.list_installed("example.com").subject == "CN=example.com"
        runner.assert_called_once()

    def test_list_certificate(self, prepared, make_cert):
        prepared.paths.cert_file("example.com").write_bytes(make_cert("example.com"))
        info = _make_lifecycle(prepared).list_certificate("example.com")
        assert info.path == prepared.paths.cert_file("example.com")


# ---------------------------------------------------------------------------
# Configuration check
# ---------------------------------------------------------------------------


class TestVerifyConfig:
    def test_reports_missing_files(self, settings):
        problems = _make_lifecycle(settings).verify_config()
        assert any("ACME account key" in p for p in problems)
        assert any("request profile" in p for p in problems)
        assert any("domain list" in p for p in problems)

    def test_reports_per_domain_files(self, settings, write_domains, install_account_key):
        write_domains({"example.com": None})
        install_account_key()
        problems = _make_lifecycle(settings).verify_config()
        assert any("SAN file" in p for p in problems)
        assert any("private key" in p for p in problems)

    def test_complete_setup(self, prepared, write_profile):
        write_profile({"subject": {"country": "DE"}})
        assert _make_lifecycle(prepared).verify_config() == []

    def test_missing_directory(self, settings):
        settings.paths.challenge_dir.rmdir()
        problems = _make_lifecycle(settings).verify_config()
        assert any(p.startswith("challenge directory") for p in problems)
