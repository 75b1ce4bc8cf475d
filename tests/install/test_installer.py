"""Tests for getcerts.install.installer -- backup, aliases, key copy, reload."""

from __future__ import annotations

import dataclasses
import os
import stat
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from getcerts.core.domains import DomainConfig
from getcerts.core.errors import (
    CertificateMissingError,
    InstallAliasLinkError,
    InstallBackupError,
    InstallerReloadError,
    InstallKeyError,
)
from getcerts.core.types import ExitCode
from getcerts.install import Installer
from getcerts.install.installer import backup_suffix

DOMAIN = DomainConfig("example.com", ("www", "mail"))

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_installer(settings, now, *, runner=None, **install_overrides) -> Installer:
    install = dataclasses.replace(settings.install, **install_overrides)
    return Installer(
        settings.paths,
        install,
        runner=runner or MagicMock(),
        clock=lambda: now,
    )


def _issue(settings, make_cert, domain: DomainConfig = DOMAIN) -> bytes:
    """Place a leaf for *domain* in the working directory."""
    pem = make_cert(domain.name, sans=domain.fqdns)
    settings.paths.cert_file(domain.name).write_bytes(pem)
    return pem


# ---------------------------------------------------------------------------
# Install
# ---------------------------------------------------------------------------


class TestInstall:
    def test_first_install(self, settings, make_cert, install_key, fixed_now):
        _issue(settings, make_cert)
        install_key("example.com")
        runner = MagicMock()
        installer = _make_installer(settings, fixed_now, runner=runner)

        report = installer.install(DOMAIN)

        installed = settings.paths.system_cert_dir / "example.com.crt"
        assert report.installed_path == installed
        assert report.backup_path is None
        assert installed.read_bytes() == settings.paths.cert_file("example.com").read_bytes()
        assert [p.name for p in report.aliases] == [
            "www.example.com.crt",
            "mail.example.com.crt",
        ]
        for alias in report.aliases:
            assert os.path.samefile(alias, installed)
        assert report.reloaded is True
        runner.assert_called_once_with(
            ["/bin/true"],
            check=True,
            timeout=settings.install.reload_timeout_seconds,
            capture_output=True,
            text=True,
        )

    def test_key_installed_with_configured_mode(self, settings, make_cert, install_key, fixed_now):
        _issue(settings, make_cert)
        source = install_key("example.com")
        report = _make_installer(settings, fixed_now).install(DOMAIN)

        assert report.key_path == settings.paths.system_key_dir / "example.com.key"
        assert report.key_path.read_bytes() == source.read_bytes()
        assert stat.S_IMODE(report.key_path.stat().st_mode) == 0o600

    def test_reinstall_backs_up_previous(self, settings, make_cert, install_key, fixed_now):
        install_key("example.com")
        installer = _make_installer(settings, fixed_now)
        first = _issue(settings, make_cert)
        installer.install(DOMAIN)
        _issue(settings, make_cert)

        report = installer.install(DOMAIN)

        backup = settings.paths.system_cert_dir / "example.com.crt-20260301T120000.500"
        assert report.backup_path == backup
        assert backup.read_bytes() == first
        for alias in report.aliases:
            assert os.path.samefile(alias, report.installed_path)

    def test_without_reload(self, settings, make_cert, install_key, fixed_now):
        _issue(settings, make_cert)
        install_key("example.com")
        runner = MagicMock()
        report = _make_installer(settings, fixed_now, runner=runner).install(DOMAIN, reload=False)
        assert report.reloaded is False
        runner.assert_not_called()

    def test_missing_leaf(self, settings, fixed_now):
        with pytest.raises(CertificateMissingError) as exc_info:
            _make_installer(settings, fixed_now).install(DOMAIN)
        assert exc_info.value.exit_code == ExitCode.CERTIFICATE_MISSING
        assert list(settings.paths.system_cert_dir.iterdir()) == []


# ---------------------------------------------------------------------------
# SAN reconciliation
# ---------------------------------------------------------------------------


class TestReconcile:
    def _install_then_shrink(self, settings, make_cert, install_key, fixed_now, **overrides):
        install_key("example.com")
        installer = _make_installer(settings, fixed_now, **overrides)
        _issue(settings, make_cert)
        installer.install(DOMAIN)
        shrunk = DomainConfig("example.com", ("www",))
        _issue(settings, make_cert, shrunk)
        return installer.install(shrunk)

    def test_nothing_installed(self, settings, fixed_now):
        result = _make_installer(settings, fixed_now).reconcile(DOMAIN)
        assert result.embedded == ()
        assert result.missing == ("www.example.com", "mail.example.com")

    def test_stale_alias_kept_by_default(self, settings, make_cert, install_key, fixed_now):
        report = self._install_then_shrink(settings, make_cert, install_key, fixed_now)
        assert report.reconciliation.stale == ("mail.example.com",)
        assert report.reconciliation.drifted is True
        assert (settings.paths.system_cert_dir / "mail.example.com.crt").exists()

    def test_stale_alias_pruned(self, settings, make_cert, install_key, fixed_now):
        report = self._install_then_shrink(
            settings,
            make_cert,
            install_key,
            fixed_now,
            prune_stale_aliases=True,
        )
        assert report.reconciliation.stale == ("mail.example.com",)
        assert not (settings.paths.system_cert_dir / "mail.example.com.crt").exists()

    def test_unreadable_installed_cert_is_tolerated(self, settings, fixed_now):
        (settings.paths.system_cert_dir / "example.com.crt").write_text("junk", encoding="utf-8")
        result = _make_installer(settings, fixed_now).reconcile(DOMAIN)
        assert result.embedded == ()


# ---------------------------------------------------------------------------
# Step failures
# ---------------------------------------------------------------------------


class TestFailures:
    def test_backup_failure(self, settings, make_cert, install_key, fixed_now):
        install_key("example.com")
        installer = _make_installer(settings, fixed_now)
        _issue(settings, make_cert)
        installer.install(DOMAIN)

        with (
            patch("getcerts.install.installer.os.rename", side_effect=PermissionError(13, "no")),
            pytest.raises(InstallBackupError) as exc_info,
        ):
            installer.install(DOMAIN)
        assert exc_info.value.step == "backup"
        assert exc_info.value.exit_code == ExitCode.INSTALL_BACKUP_FAILED

    def test_link_failure(self, settings, make_cert, install_key, fixed_now):
        _issue(settings, make_cert)
        install_key("example.com")
        with (
            patch("getcerts.install.installer.os.link", side_effect=OSError(18, "cross-device")),
            pytest.raises(InstallAliasLinkError) as exc_info,
        ):
            _make_installer(settings, fixed_now).install(DOMAIN)
        assert exc_info.value.path.endswith("www.example.com.crt")
        # the certificate copy before the failing step stays in place
        assert (settings.paths.system_cert_dir / "example.com.crt").exists()

    def test_missing_domain_key(self, settings, make_cert, fixed_now):
        _issue(settings, make_cert)
        with pytest.raises(InstallKeyError) as exc_info:
            _make_installer(settings, fixed_now).install(DOMAIN)
        assert exc_info.value.step == "install-key"

    def test_reload_failure_after_swap(self, settings, make_cert, install_key, fixed_now):
        _issue(settings, make_cert)
        install_key("example.com")
        runner = MagicMock(
            side_effect=subprocess.CalledProcessError(1, ["/bin/true"], stderr="httpd: bad config"),
        )
        with pytest.raises(InstallerReloadError, match="bad config") as exc_info:
            _make_installer(settings, fixed_now, runner=runner).install(DOMAIN)
        assert exc_info.value.exit_code == ExitCode.INSTALL_RELOAD_FAILED
        assert (settings.paths.system_key_dir / "example.com.key").exists()


# ---------------------------------------------------------------------------
# Reload
# ---------------------------------------------------------------------------


class TestReload:
    def test_timeout(self, settings, fixed_now):
        runner = MagicMock(side_effect=subprocess.TimeoutExpired(["/bin/true"], 120))
        with pytest.raises(InstallerReloadError, match="timed out"):
            _make_installer(settings, fixed_now, runner=runner).reload()

    def test_missing_executable(self, settings, fixed_now):
        runner = MagicMock(side_effect=FileNotFoundError(2, "No such file or directory"))
        with pytest.raises(InstallerReloadError, match="cannot run"):
            _make_installer(settings, fixed_now, runner=runner).reload()

    def test_custom_command(self, settings, fixed_now):
        runner = MagicMock()
        installer = _make_installer(
            settings,
            fixed_now,
            runner=runner,
            reload_command=("apachectl", "graceful"),
        )
        installer.reload()
        assert runner.call_args[0][0] == ["apachectl", "graceful"]


def test_backup_suffix_has_milliseconds(fixed_now):
    assert backup_suffix(fixed_now) == "20260301T120000.500"
