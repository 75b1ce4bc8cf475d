"""Split a CA-issued PEM bundle into leaf and intermediate files.

Classification, in received order:

* A certificate whose common name is set (and is not one of the CA's
  placeholder tokens) and either equals the domain or does not carry
  ``BasicConstraints(ca=True)`` is the leaf, stored as ``<domain>.crt``.
  Only the first such certificate is taken.
* Any other certificate whose issuer or subject mentions one of the
  configured CA markers is an intermediate, stored as
  ``<prefix>-0001.crt``, ``<prefix>-0002.crt``, ...
* Everything else is logged and skipped.

Files are re-encoded by :mod:`cryptography` and replaced atomically, so
splitting the same chain twice yields byte-identical files.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from getcerts.certs.inspect import common_name, is_ca
from getcerts.core.errors import CertificateWriteError, ChainParseError
from getcerts.core.fileio import write_atomic
from getcerts.core.types import CertificateRole

if TYPE_CHECKING:
    from datetime import datetime
    from pathlib import Path

    from getcerts.config.settings import ChainSettings, PathSettings

log = logging.getLogger(__name__)

_PEM_BLOCK_RE = re.compile(
    rb"-----BEGIN CERTIFICATE-----\r?\n.+?\r?\n-----END CERTIFICATE-----",
    re.DOTALL,
)

_CERT_MODE = 0o644


@dataclass(frozen=True)
class StoredCertificate:
    path: Path
    role: CertificateRole
    common_name: str
    issuer: str
    not_after: datetime


@dataclass(frozen=True)
class SplitResult:
    leaf: StoredCertificate
    intermediates: tuple[StoredCertificate, ...] = ()


def parse_chain(raw_chain_pem: str | bytes, *, domain: str | None = None) -> list[x509.Certificate]:
    """Parse every PEM certificate block of *raw_chain_pem*, order preserved.

    Raises
    ------
    ChainParseError
        If no block is found or a block does not parse.

    """
    try:
        data = raw_chain_pem.encode("utf-8") if isinstance(raw_chain_pem, str) else raw_chain_pem
    except UnicodeEncodeError as exc:
        raise ChainParseError(f"chain is not encodable text: {exc.reason}", domain=domain) from exc
    blocks = _PEM_BLOCK_RE.findall(data)
    if not blocks:
        raise ChainParseError("no certificate found in chain", domain=domain)

    certs = []
    for index, block in enumerate(blocks, start=1):
        try:
            certs.append(x509.load_pem_x509_certificate(block))
        except ValueError as exc:
            raise ChainParseError(
                f"certificate #{index} in chain does not parse: {exc}",
                domain=domain,
            ) from exc
    return certs


class ChainSplitter:
    """Classify and store the certificates of an issued chain.

    Parameters
    ----------
    paths:
        Working directory layout; files go to ``cert_dir``.
    chain:
        Placeholder and CA markers, intermediate file prefix.

    """

    def __init__(self, paths: PathSettings, chain: ChainSettings) -> None:
        self._cert_dir = paths.cert_dir
        self._paths = paths
        self._chain = chain

    @property
    def raw_chain_path(self) -> Path:
        return self._cert_dir / self._chain.raw_chain_name

    def write_raw(self, raw_chain_pem: str | bytes, domain: str) -> Path:
        """Store the chain as received so a failed split leaves evidence."""
        path = self.raw_chain_path
        try:
            data = (
                raw_chain_pem.encode("utf-8") if isinstance(raw_chain_pem, str) else raw_chain_pem
            )
        except UnicodeEncodeError as exc:
            raise CertificateWriteError(
                f"raw chain is not encodable text: {exc.reason}",
                domain=domain,
                path=path,
                step="store-chain",
            ) from exc
        try:
            self._cert_dir.mkdir(parents=True, exist_ok=True)
            write_atomic(path, data, mode=_CERT_MODE)
        except OSError as exc:
            raise CertificateWriteError(
                f"cannot write raw chain: {exc.strerror or exc}",
                domain=domain,
                path=path,
                step="store-chain",
            ) from exc
        return path

    # -- classification ----------------------------------------------------

    def _effective_cn(self, cert: x509.Certificate) -> str:
        cn = common_name(cert.subject)
        if any(marker in cn for marker in self._chain.placeholder_markers):
            return ""
        return cn

    def _mentions_ca(self, cert: x509.Certificate) -> bool:
        text = f"{cert.issuer.rfc4514_string()} {cert.subject.rfc4514_string()}".lower()
        return any(marker.lower() in text for marker in self._chain.ca_markers)

    def _store(
        self,
        cert: x509.Certificate,
        path: Path,
        role: CertificateRole,
        domain: str,
    ) -> StoredCertificate:
        try:
            write_atomic(path, cert.public_bytes(serialization.Encoding.PEM), mode=_CERT_MODE)
        except OSError as exc:
            raise CertificateWriteError(
                f"cannot write {role} certificate: {exc.strerror or exc}",
                domain=domain,
                path=path,
                step="split",
            ) from exc
        log.info("Stored %s certificate %s", role, path)
        return StoredCertificate(
            path=path,
            role=role,
            common_name=common_name(cert.subject),
            issuer=cert.issuer.rfc4514_string(),
            not_after=cert.not_valid_after_utc,
        )

    # -- public API --------------------------------------------------------

    def split(self, raw_chain_pem: str | bytes, domain: str) -> SplitResult:
        """Split *raw_chain_pem* and store each certificate in ``cert_dir``.

        Raises
        ------
        ChainParseError
            If the chain holds no certificate or no leaf for *domain*.
        CertificateWriteError
            If a certificate file cannot be written.

        """
        certs = parse_chain(raw_chain_pem, domain=domain)

        leaf_cert: x509.Certificate | None = None
        intermediates: list[x509.Certificate] = []
        for index, cert in enumerate(certs, start=1):
            cn = self._effective_cn(cert)
            if leaf_cert is None and cn and (cn.lower() == domain.lower() or not is_ca(cert)):
                if cn.lower() != domain.lower():
                    log.warning(
                        "Leaf certificate CN '%s' differs from domain %s",
                        cn,
                        domain,
                    )
                leaf_cert = cert
            elif self._mentions_ca(cert):
                intermediates.append(cert)
            else:
                log.warning(
                    "Skipping certificate #%d (%s): neither leaf nor known CA",
                    index,
                    cert.subject.rfc4514_string(),
                )

        if leaf_cert is None:
            raise ChainParseError("no leaf certificate in chain", domain=domain)

        self._cert_dir.mkdir(parents=True, exist_ok=True)
        leaf = self._store(leaf_cert, self._paths.cert_file(domain), CertificateRole.LEAF, domain)
        stored = tuple(
            self._store(
                cert,
                self._cert_dir / f"{self._chain.intermediate_prefix}-{seq:04d}.crt",
                CertificateRole.INTERMEDIATE,
                domain,
            )
            for seq, cert in enumerate(intermediates, start=1)
        )
        return SplitResult(leaf=leaf, intermediates=stored)

    def split_file(self, path: Path, domain: str) -> SplitResult:
        """Split the chain stored at *path*; delete it only after full success."""
        try:
            data = path.read_bytes()
        except OSError as exc:
            raise ChainParseError(
                f"cannot read raw chain: {exc.strerror or exc}",
                domain=domain,
                path=path,
            ) from exc

        result = self.split(data, domain)
        try:
            path.unlink()
        except OSError as exc:
            log.warning("Cannot remove raw chain %s: %s", path, exc)
        else:
            log.debug("Removed raw chain %s", path)
        return result
