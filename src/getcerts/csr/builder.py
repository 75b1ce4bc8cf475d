"""PKCS#10 signing request generation and inspection.

A domain's request always carries ``CN=<domain>`` and a
subjectAltName extension listing the domain followed by every
configured ``<label>.<domain>``.  The SAN set is derived from
configuration each time; it is never read back from a previous request
or certificate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization

from getcerts.core.domains import read_san_labels
from getcerts.core.errors import (
    CsrGenerationError,
    CsrMissingError,
    CsrReadError,
    CsrVerificationError,
    NoSanDefinedError,
)
from getcerts.core.fileio import write_atomic
from getcerts.csr.profile import load_profile

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

    from getcerts.config.settings import PathSettings
    from getcerts.keys.store import KeyStore

log = logging.getLogger(__name__)

_SAN_PREFIX = "DNS:"


@dataclass(frozen=True)
class CsrListing:
    """Read-only view of a stored signing request.

    ``sans`` is only populated for verbose listings.
    """

    subject: str
    sans: tuple[str, ...] = field(default_factory=tuple)


def build_san_list(domain: str, san_entries: Iterable[str]) -> list[str]:
    """Return ``["DNS:<domain>", "DNS:<label>.<domain>", ...]``.

    The domain is always first; duplicates (case-insensitive) are
    dropped while keeping first-seen order.

    Raises
    ------
    NoSanDefinedError
        If the resulting list would be empty.

    """
    names: list[str] = []
    seen: set[str] = set()
    candidates = [domain] if domain else []
    candidates.extend(f"{label}.{domain}" for label in san_entries if label and domain)
    for name in candidates:
        key = name.lower()
        if key in seen:
            continue
        seen.add(key)
        names.append(f"{_SAN_PREFIX}{name}")

    if not names:
        raise NoSanDefinedError("no subject alternative names defined", domain=domain or None)
    return names


def dns_names(csr: x509.CertificateSigningRequest) -> list[str]:
    """Return the DNS names of the request's subjectAltName extension."""
    try:
        san_ext = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        return []
    return san_ext.value.get_values_for_type(x509.DNSName)


class CsrBuilder:
    """Create, read and verify per-domain signing requests.

    Parameters
    ----------
    paths:
        Working directory layout; the request lives in
        ``<cert_dir>/<domain>.csr``.
    key_store:
        Source of the domain keys; a key is created when absent.

    """

    def __init__(self, paths: PathSettings, key_store: KeyStore) -> None:
        self._paths = paths
        self._key_store = key_store

    def csr_path(self, domain: str) -> Path:
        return self._paths.csr_file(domain)

    def exists(self, domain: str) -> bool:
        return self.csr_path(domain).is_file()

    # -- creation ----------------------------------------------------------

    def create_csr(self, domain: str) -> Path:
        """Build and store a new signing request for *domain*.

        An existing request is overwritten.

        Raises
        ------
        SanFileMissingError
            If ``<domain>-san.txt`` does not exist.
        RequestProfileError
            If the request profile is malformed.
        CsrGenerationError
            If signing or writing the request fails.

        """
        san_list = build_san_list(domain, read_san_labels(self._paths, domain))
        profile = load_profile(self._paths.request_profile)

        if not self._key_store.exists(domain):
            log.info("No private key for %s, creating one", domain)
            self._key_store.create_key(domain)
        key = self._key_store.load_key(domain)

        path = self.csr_path(domain)
        names = [x509.DNSName(entry.removeprefix(_SAN_PREFIX)) for entry in san_list]
        try:
            csr = (
                x509.CertificateSigningRequestBuilder()
                .subject_name(profile.subject_for(domain))
                .add_extension(x509.SubjectAlternativeName(names), critical=False)
                .sign(key, hashes.SHA256())
            )
        except (ValueError, TypeError) as exc:
            raise CsrGenerationError(
                f"cannot sign request: {exc}",
                domain=domain,
                path=path,
            ) from exc

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            write_atomic(path, csr.public_bytes(serialization.Encoding.PEM))
        except OSError as exc:
            raise CsrGenerationError(
                f"cannot write request: {exc.strerror or exc}",
                domain=domain,
                path=path,
            ) from exc

        log.info("Signing request for %s written to %s (%s)", domain, path, ", ".join(san_list))
        return path

    # -- inspection --------------------------------------------------------

    def read_csr(self, domain: str) -> x509.CertificateSigningRequest:
        """Load the stored request of *domain*.

        Raises
        ------
        CsrMissingError
            If no request file exists.
        CsrReadError
            If the file cannot be read or parsed.

        """
        path = self.csr_path(domain)
        try:
            data = path.read_bytes()
        except FileNotFoundError:
            raise CsrMissingError("signing request not found", domain=domain, path=path) from None
        except OSError as exc:
            raise CsrReadError(
                f"cannot read signing request: {exc.strerror or exc}",
                domain=domain,
                path=path,
            ) from exc

        try:
            return x509.load_pem_x509_csr(data)
        except ValueError as exc:
            raise CsrReadError(
                f"cannot parse signing request: {exc}",
                domain=domain,
                path=path,
            ) from exc

    def verify(self, domain: str) -> CsrListing:
        """Check the request's self-signature against its embedded public key.

        Raises
        ------
        CsrVerificationError
            If the signature does not verify.

        """
        csr = self.read_csr(domain)
        if not csr.is_signature_valid:
            raise CsrVerificationError(
                "signature does not match the embedded public key",
                domain=domain,
                path=self.csr_path(domain),
            )
        log.info("Signing request for %s verified", domain)
        return _listing(csr, verbose=True)

    def list_csr(self, domain: str, *, verbose: bool = False) -> CsrListing:
        """Return the subject (and with *verbose* the SAN list) of the request."""
        return _listing(self.read_csr(domain), verbose=verbose)


def _listing(csr: x509.CertificateSigningRequest, *, verbose: bool) -> CsrListing:
    sans = tuple(f"{_SAN_PREFIX}{name}" for name in dns_names(csr)) if verbose else ()
    return CsrListing(subject=csr.subject.rfc4514_string(), sans=sans)
