"""System-wide certificate installation and web-server reload.

``install`` runs these steps in order and stops at the first failure,
without undoing earlier ones:

1. require ``<cert_dir>/<domain>.crt``
2. reconcile the SANs embedded in the installed certificate with the
   configured SANs
3. rename the installed certificate to ``<domain>.crt-<timestamp>``
4. remove the SAN alias files
5. copy the new leaf into the system certificate directory
6. hard-link every SAN alias to the new file
7. copy the domain key into the system key directory
8. reload the web server

Each failure raises the :class:`~getcerts.core.errors.InstallError`
subclass for its step, carrying the step name and the path involved.
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from cryptography.hazmat.primitives import serialization

from getcerts.certs.inspect import (
    CertificateInfo,
    inspect_file,
    load_certificate,
    san_names,
)
from getcerts.core.errors import (
    CertificateReadError,
    InstallAliasLinkError,
    InstallAliasRemoveError,
    InstallBackupError,
    InstallCopyError,
    InstallerReloadError,
    InstallKeyError,
)
from getcerts.core.fileio import write_atomic

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from getcerts.config.settings import InstallSettings, PathSettings
    from getcerts.core.domains import DomainConfig

log = logging.getLogger(__name__)

_CERT_MODE = 0o644


@dataclass(frozen=True)
class SanReconciliation:
    """Alias names configured now versus those embedded in the installed certificate.

    The domain itself is not an alias and appears in neither list.
    """

    configured: tuple[str, ...]
    embedded: tuple[str, ...]
    stale: tuple[str, ...]
    missing: tuple[str, ...]

    @property
    def drifted(self) -> bool:
        return bool(self.stale or self.missing)


@dataclass(frozen=True)
class InstallReport:
    domain: str
    installed_path: Path
    backup_path: Path | None
    aliases: tuple[Path, ...]
    key_path: Path
    reconciliation: SanReconciliation
    reloaded: bool


def _utcnow() -> datetime:
    return datetime.now(UTC)


def backup_suffix(now: datetime) -> str:
    """``YYYYmmddTHHMMSS.mmm``: millisecond-precision backup timestamp."""
    return f"{now:%Y%m%dT%H%M%S}.{now.microsecond // 1000:03d}"


class Installer:
    """Swap system-wide certificate and key files for one domain.

    Parameters
    ----------
    paths:
        Working and system directory layout.
    settings:
        Reload command, key mode and alias pruning.
    runner:
        :func:`subprocess.run` compatible callable (replaced in tests).
    clock:
        Returns the current time for backup names (replaced in tests).

    """

    def __init__(
        self,
        paths: PathSettings,
        settings: InstallSettings,
        *,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._paths = paths
        self._settings = settings
        self._runner = runner
        self._clock = clock

    # -- paths -------------------------------------------------------------

    def installed_cert_path(self, domain: str) -> Path:
        return self._paths.system_cert_dir / f"{domain}.crt"

    def alias_path(self, fqdn: str) -> Path:
        return self._paths.system_cert_dir / f"{fqdn}.crt"

    def installed_key_path(self, domain: str) -> Path:
        return self._paths.system_key_dir / f"{domain}.key"

    # -- reconciliation ----------------------------------------------------

    def reconcile(self, domain: DomainConfig) -> SanReconciliation:
        """Compare the SANs of the installed certificate with the configured ones."""
        configured = [name.lower() for name in domain.fqdns[1:]]
        installed = self.installed_cert_path(domain.name)

        embedded: list[str] = []
        if installed.exists():
            try:
                cert = load_certificate(installed, domain=domain.name)
            except CertificateReadError as exc:
                log.warning("Cannot inspect installed certificate: %s", exc)
            else:
                embedded = [
                    name.lower()
                    for name in san_names(cert)
                    if name.lower() != domain.name.lower()
                ]

        result = SanReconciliation(
            configured=tuple(configured),
            embedded=tuple(embedded),
            stale=tuple(name for name in embedded if name not in configured),
            missing=tuple(name for name in configured if name not in embedded),
        )
        if result.stale:
            log.warning(
                "Installed certificate for %s covers SANs no longer configured: %s",
                domain.name,
                ", ".join(result.stale),
            )
        if result.missing and embedded:
            log.info(
                "Newly configured SANs for %s: %s",
                domain.name,
                ", ".join(result.missing),
            )
        return result

    # -- install -----------------------------------------------------------

    def install(self, domain: DomainConfig, *, reload: bool = True) -> InstallReport:
        """Install the current leaf certificate and key of *domain*.

        Raises
        ------
        CertificateMissingError
            If there is no leaf certificate in the working directory.
        InstallError
            The subclass for the failing step.

        """
        name = domain.name
        leaf_path = self._paths.cert_file(name)
        leaf = load_certificate(leaf_path, domain=name)
        leaf_pem = leaf.public_bytes(serialization.Encoding.PEM)

        log.info("Installing certificate for %s", name)
        reconciliation = self.reconcile(domain)
        installed = self.installed_cert_path(name)

        backup_path = self._backup(name, installed)
        self._remove_aliases(name, reconciliation)

        try:
            installed.parent.mkdir(parents=True, exist_ok=True)
            write_atomic(installed, leaf_pem, mode=_CERT_MODE)
        except OSError as exc:
            raise InstallCopyError(
                f"cannot copy certificate: {exc.strerror or exc}",
                domain=name,
                path=installed,
                step="copy",
            ) from exc
        log.info("Installed %s", installed)

        aliases = self._link_aliases(name, installed, reconciliation.configured)
        key_path = self._install_key(name)

        if reload:
            self.reload()

        return InstallReport(
            domain=name,
            installed_path=installed,
            backup_path=backup_path,
            aliases=aliases,
            key_path=key_path,
            reconciliation=reconciliation,
            reloaded=reload,
        )

    def _backup(self, domain: str, installed: Path) -> Path | None:
        backup = installed.with_name(f"{installed.name}-{backup_suffix(self._clock())}")
        try:
            os.rename(installed, backup)
        except FileNotFoundError:
            log.info("No installed certificate for %s, skipping backup", domain)
            return None
        except OSError as exc:
            raise InstallBackupError(
                f"cannot back up installed certificate: {exc.strerror or exc}",
                domain=domain,
                path=installed,
                step="backup",
            ) from exc
        log.info("Saved current %s certificate as %s", domain, backup)
        return backup

    def _remove_aliases(self, domain: str, reconciliation: SanReconciliation) -> None:
        names = list(reconciliation.configured)
        if self._settings.prune_stale_aliases:
            names.extend(reconciliation.stale)
        elif reconciliation.stale:
            log.warning(
                "Leaving stale alias files for %s in place: %s",
                domain,
                ", ".join(reconciliation.stale),
            )

        for fqdn in names:
            path = self.alias_path(fqdn)
            try:
                path.unlink()
            except FileNotFoundError:
                log.debug("Alias %s does not exist, nothing to remove", path)
            except OSError as exc:
                raise InstallAliasRemoveError(
                    f"cannot remove alias: {exc.strerror or exc}",
                    domain=domain,
                    path=path,
                    step="remove-alias",
                ) from exc

    def _link_aliases(
        self,
        domain: str,
        installed: Path,
        fqdns: tuple[str, ...],
    ) -> tuple[Path, ...]:
        aliases = []
        for fqdn in fqdns:
            path = self.alias_path(fqdn)
            try:
                os.link(installed, path)
            except OSError as exc:
                raise InstallAliasLinkError(
                    f"cannot link alias: {exc.strerror or exc}",
                    domain=domain,
                    path=path,
                    step="link-alias",
                ) from exc
            aliases.append(path)
        if aliases:
            log.info("Linked %d SAN alias(es) for %s", len(aliases), domain)
        return tuple(aliases)

    def _install_key(self, domain: str) -> Path:
        source = self._paths.key_file(domain)
        target = self.installed_key_path(domain)
        try:
            data = source.read_bytes()
            target.parent.mkdir(parents=True, exist_ok=True)
            write_atomic(target, data, mode=self._settings.key_mode)
        except OSError as exc:
            raise InstallKeyError(
                f"cannot install private key: {exc.strerror or exc}",
                domain=domain,
                path=exc.filename or target,
                step="install-key",
            ) from exc
        log.info("Installed private key %s", target)
        return target

    # -- reload ------------------------------------------------------------

    def reload(self) -> None:
        """Run the configured web-server reload command.

        Safe to run on its own, e.g. after a failed reload.

        Raises
        ------
        InstallerReloadError
            On a non-zero exit, a timeout, or a missing executable.

        """
        command = list(self._settings.reload_command)
        log.info("Reloading web server: %s", " ".join(command))
        try:
            self._runner(
                command,
                check=True,
                timeout=self._settings.reload_timeout_seconds,
                capture_output=True,
                text=True,
            )
        except subprocess.CalledProcessError as exc:
            output = (exc.stderr or exc.stdout or "").strip()
            raise InstallerReloadError(
                f"reload command exited with status {exc.returncode}: {output}",
                step="reload",
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise InstallerReloadError(
                f"reload command timed out after {exc.timeout}s",
                step="reload",
            ) from exc
        except OSError as exc:
            raise InstallerReloadError(
                f"cannot run reload command: {exc.strerror or exc}",
                path=command[0],
                step="reload",
            ) from exc

    # -- listing -----------------------------------------------------------

    def list_installed(self, domain: str) -> CertificateInfo:
        """Describe the installed copy of *domain*'s certificate."""
        return inspect_file(self.installed_cert_path(domain), domain=domain)
