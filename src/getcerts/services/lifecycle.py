"""Certificate lifecycle service.

Sequences the per-domain steps -- key, signing request, ACME issuance,
chain split, installation -- and exposes every operation the command
line dispatches.  Each step starts only after its predecessor
succeeded; failures propagate as :class:`~getcerts.core.errors.GetcertsError`
subclasses.

Usage::

    lifecycle = CertificateLifecycle(settings)
    outcome = lifecycle.get_certificate("example.com")
    if isinstance(outcome, RenewalDecision):
        ...  # not due
    else:
        lifecycle.install("example.com")
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from getcerts.acme.client import AcmeClient
from getcerts.acme.webroot import ChallengeWebroot
from getcerts.certs.chain import ChainSplitter, SplitResult
from getcerts.certs.inspect import inspect_file, load_certificate
from getcerts.core.domains import default_domain, load_domain, read_domains
from getcerts.csr.builder import CsrBuilder
from getcerts.install.installer import Installer
from getcerts.keys.store import KeyStore
from getcerts.renewal.policy import RenewalDecision, RenewalPolicy

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes

    from getcerts.certs.inspect import CertificateInfo
    from getcerts.config.settings import GetcertsSettings
    from getcerts.core.domains import DomainConfig
    from getcerts.csr.builder import CsrListing
    from getcerts.install.installer import InstallReport

    AcmeClientFactory = Callable[[PrivateKeyTypes], AcmeClient]

log = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class CertificateLifecycle:
    """Every certificate operation for the domains of one installation.

    Parameters
    ----------
    settings:
        The settings of this invocation.
    key_store, csr_builder, splitter, installer:
        Collaborators; built from *settings* when omitted.
    acme_client_factory:
        Builds an :class:`AcmeClient` from the account key.
    clock:
        Current aware UTC time, shared by renewal decisions and backup
        timestamps.

    """

    def __init__(  # noqa: PLR0913
        self,
        settings: GetcertsSettings,
        *,
        key_store: KeyStore | None = None,
        csr_builder: CsrBuilder | None = None,
        acme_client_factory: AcmeClientFactory | None = None,
        splitter: ChainSplitter | None = None,
        installer: Installer | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._settings = settings
        paths = settings.paths
        self._key_store = key_store or KeyStore(paths, settings.keys)
        self._csr_builder = csr_builder or CsrBuilder(paths, self._key_store)
        self._acme_client_factory = acme_client_factory or self._default_acme_client
        self._splitter = splitter or ChainSplitter(paths, settings.chain)
        clock = clock or _utcnow
        self._installer = installer or Installer(paths, settings.install, clock=clock)
        self._policy = RenewalPolicy(clock)

    @property
    def settings(self) -> GetcertsSettings:
        return self._settings

    def _default_acme_client(self, account_key: PrivateKeyTypes) -> AcmeClient:
        acme = self._settings.acme
        webroot = ChallengeWebroot(
            self._settings.paths.challenge_dir,
            timeout=acme.timeout_seconds,
        )
        return AcmeClient(acme, account_key, webroot)

    # ------------------------------------------------------------------
    # Domains
    # ------------------------------------------------------------------

    def list_domains(self) -> list[str]:
        return read_domains(self._settings.paths)

    def default_domain(self) -> str:
        return default_domain(self._settings.paths)

    def domain_config(self, domain: str) -> DomainConfig:
        return load_domain(self._settings.paths, domain)

    def list_sans(self, domain: str) -> list[str]:
        """The configured SAN names, ``<label>.<domain>``, without the domain itself."""
        return self.domain_config(domain).fqdns[1:]

    # ------------------------------------------------------------------
    # Keys and signing requests
    # ------------------------------------------------------------------

    def key_exists(self, domain: str) -> bool:
        return self._key_store.exists(domain)

    def create_key(self, domain: str) -> Path:
        """Generate a key for *domain*, replacing any existing key."""
        return self._key_store.create_key(domain)

    def create_csr(self, domain: str) -> Path:
        return self._csr_builder.create_csr(domain)

    def verify_csr(self, domain: str) -> CsrListing:
        return self._csr_builder.verify(domain)

    def list_csr(self, domain: str, *, verbose: bool = False) -> CsrListing:
        return self._csr_builder.list_csr(domain, verbose=verbose)

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def renewal_decision(self, domain: str, *, force: bool = False) -> RenewalDecision:
        cert_path = self._settings.paths.cert_file(domain)
        cert = load_certificate(cert_path, domain=domain) if cert_path.exists() else None
        return self._policy.evaluate(
            cert,
            self._settings.renewal.min_days_left,
            force=force,
        )

    def get_certificate(
        self,
        domain: str,
        *,
        force: bool = False,
    ) -> RenewalDecision | SplitResult:
        """Obtain a new certificate for *domain* if renewal is due.

        Returns the declined :class:`RenewalDecision` when the current
        certificate is still valid long enough, otherwise the stored
        :class:`SplitResult`.  Nothing in the certificate directory is
        touched unless the CA issued a certificate.
        """
        decision = self.renewal_decision(domain, force=force)
        if not decision.renew:
            log.info("Certificate for %s is %s", domain, decision.reason)
            return decision
        log.info("Requesting certificate for %s (%s)", domain, decision.reason)

        csr = self._csr_builder.read_csr(domain)
        self._csr_builder.verify(domain)
        client = self._acme_client_factory(self._key_store.load_account_key())
        try:
            issued = client.issue(csr, domain=domain)
        finally:
            client.cleanup()

        raw_path = self._splitter.write_raw(issued.pem, domain)
        return self._splitter.split_file(raw_path, domain)

    def auto_generate(
        self,
        domain: str,
        *,
        force: bool = False,
    ) -> RenewalDecision | SplitResult:
        """Create whatever is missing (key, signing request), then :meth:`get_certificate`."""
        if not self._key_store.exists(domain):
            self._key_store.create_key(domain)
        if not self._csr_builder.exists(domain):
            self._csr_builder.create_csr(domain)
        return self.get_certificate(domain, force=force)

    # ------------------------------------------------------------------
    # Inspection and installation
    # ------------------------------------------------------------------

    def list_certificate(self, domain: str) -> CertificateInfo:
        return inspect_file(self._settings.paths.cert_file(domain), domain=domain)

    def list_installed(self, domain: str) -> CertificateInfo:
        return self._installer.list_installed(domain)

    def install(self, domain: str, *, reload: bool = True) -> InstallReport:
        return self._installer.install(self.domain_config(domain), reload=reload)

    def reload(self) -> None:
        self._installer.reload()

    # ------------------------------------------------------------------
    # Configuration check
    # ------------------------------------------------------------------

    def verify_config(self) -> list[str]:
        """Return every missing file or directory; an empty list means OK."""
        paths = self._settings.paths
        problems: list[str] = []

        for label, path in (
            ("challenge directory", paths.challenge_dir),
            ("key directory", paths.key_dir),
            ("certificate directory", paths.cert_dir),
            ("system certificate directory", paths.system_cert_dir),
            ("system key directory", paths.system_key_dir),
        ):
            if not path.is_dir():
                problems.append(f"{label} {path} does not exist")

        if not paths.account_key.is_file():
            problems.append(f"ACME account key {paths.account_key} does not exist")
        if not paths.request_profile.is_file():
            problems.append(f"request profile {paths.request_profile} does not exist")

        if not paths.domain_list.is_file():
            problems.append(f"domain list {paths.domain_list} does not exist")
            return problems

        for domain in read_domains(paths):
            if not paths.san_file(domain).is_file():
                problems.append(f"SAN file {paths.san_file(domain)} does not exist")
            if not paths.key_file(domain).is_file():
                problems.append(f"private key {paths.key_file(domain)} does not exist")
        return problems
