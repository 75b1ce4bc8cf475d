"""Typed certificate accessors built on :mod:`cryptography.x509`.

Used wherever a certificate's subject, issuer, validity or SAN list is
needed: chain classification, renewal decisions, install-time SAN
reconciliation and the ``info`` / ``list-certificates`` listings.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from getcerts.core.errors import CertificateMissingError, CertificateReadError

if TYPE_CHECKING:
    from datetime import datetime
    from pathlib import Path

_STAGING_MARKERS = ("staging", "fake", "(stg)")

_PURPOSES = {
    ExtendedKeyUsageOID.SERVER_AUTH: "TLS server",
    ExtendedKeyUsageOID.CLIENT_AUTH: "TLS client",
    ExtendedKeyUsageOID.CODE_SIGNING: "code signing",
    ExtendedKeyUsageOID.EMAIL_PROTECTION: "e-mail protection",
    ExtendedKeyUsageOID.OCSP_SIGNING: "OCSP signing",
}


@dataclass(frozen=True)
class CertificateInfo:
    """Human-facing summary of one certificate file."""

    path: Path
    subject: str
    issuer: str
    not_before: datetime
    not_after: datetime
    sans: tuple[str, ...]
    is_staging: bool
    purpose: tuple[str, ...]


def load_certificate(path: Path, *, domain: str | None = None) -> x509.Certificate:
    """Load the first PEM certificate in *path*.

    Raises
    ------
    CertificateMissingError
        If *path* does not exist.
    CertificateReadError
        If it cannot be read or parsed.

    """
    try:
        data = path.read_bytes()
    except FileNotFoundError:
        raise CertificateMissingError("certificate not found", domain=domain, path=path) from None
    except OSError as exc:
        raise CertificateReadError(
            f"cannot read certificate: {exc.strerror or exc}",
            domain=domain,
            path=path,
        ) from exc

    try:
        return x509.load_pem_x509_certificate(data)
    except ValueError as exc:
        raise CertificateReadError(
            f"cannot parse certificate: {exc}",
            domain=domain,
            path=path,
        ) from exc


def common_name(name: x509.Name) -> str:
    """The first CN of *name*, or ``""``."""
    attrs = name.get_attributes_for_oid(NameOID.COMMON_NAME)
    return str(attrs[0].value) if attrs else ""


def san_names(cert: x509.Certificate) -> list[str]:
    """DNS names of the subjectAltName extension, in certificate order."""
    try:
        san_ext = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        return []
    return san_ext.value.get_values_for_type(x509.DNSName)


def is_ca(cert: x509.Certificate) -> bool:
    """Whether BasicConstraints marks *cert* as a CA."""
    try:
        return cert.extensions.get_extension_for_class(x509.BasicConstraints).value.ca
    except x509.ExtensionNotFound:
        return False


def is_staging(cert: x509.Certificate) -> bool:
    """Whether *cert* was issued by a test/staging CA."""
    issuer = cert.issuer.rfc4514_string().lower()
    return any(marker in issuer for marker in _STAGING_MARKERS)


def purposes(cert: x509.Certificate) -> tuple[str, ...]:
    try:
        eku = cert.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
    except x509.ExtensionNotFound:
        return ()
    return tuple(_PURPOSES.get(oid, oid.dotted_string) for oid in eku)


def describe(cert: x509.Certificate, path: Path) -> CertificateInfo:
    return CertificateInfo(
        path=path,
        subject=cert.subject.rfc4514_string(),
        issuer=cert.issuer.rfc4514_string(),
        not_before=cert.not_valid_before_utc,
        not_after=cert.not_valid_after_utc,
        sans=tuple(san_names(cert)),
        is_staging=is_staging(cert),
        purpose=purposes(cert),
    )


def inspect_file(path: Path, *, domain: str | None = None) -> CertificateInfo:
    """Load and describe the certificate at *path*."""
    return describe(load_certificate(path, domain=domain), path)
