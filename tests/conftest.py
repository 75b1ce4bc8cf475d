"""Root conftest for the getcerts test suite."""

from __future__ import annotations

import logging
import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
import yaml
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

# ---------------------------------------------------------------------------
# Make ``src/`` importable without installing the package
# ---------------------------------------------------------------------------
_SRC = str(Path(__file__).resolve().parent.parent / "src")
if _SRC not in sys.path:
    sys.path.insert(0, _SRC)

from getcerts.config.settings import build_settings  # noqa: E402

# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def rsa_key() -> rsa.RSAPrivateKey:
    """One 2048-bit RSA key shared by the whole session (generation is slow)."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def ca_key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP256R1())


def _pem_key(key) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


# ---------------------------------------------------------------------------
# Settings and working tree
# ---------------------------------------------------------------------------


@pytest.fixture()
def config_data(tmp_path: Path) -> dict:
    """Raw configuration pointing every path below *tmp_path*."""
    return {
        "paths": {
            "home": str(tmp_path / "acme"),
            "challenge_dir": str(tmp_path / "www" / ".well-known" / "acme-challenge"),
            "system_cert_dir": str(tmp_path / "pki" / "certs"),
            "system_key_dir": str(tmp_path / "pki" / "private"),
        },
        "keys": {"rsa_key_size": 2048},
        "acme": {
            "directory_url": "https://acme.test/directory",
            "staging_directory_url": "https://staging.acme.test/directory",
            "retry_delay_seconds": 0,
            "poll_interval_seconds": 0,
            "poll_max_attempts": 3,
            "self_check": False,
        },
        "install": {"reload_command": ["/bin/true"]},
    }


@pytest.fixture()
def settings(config_data: dict):
    """Built settings with all working directories created."""
    built = build_settings(config_data)
    paths = built.paths
    for directory in (
        paths.key_dir,
        paths.cert_dir,
        paths.config_dir,
        paths.challenge_dir,
        paths.system_cert_dir,
        paths.system_key_dir,
    ):
        directory.mkdir(parents=True, exist_ok=True)
    return built


@pytest.fixture()
def write_domains(settings):
    """Write ``domain.txt`` and one SAN file per domain.

    Usage: ``write_domains({"example.com": ["www", "mail"]})``; a value
    of ``None`` leaves the SAN file out.
    """

    def _write(domains: dict[str, list[str] | None]) -> None:
        paths = settings.paths
        paths.domain_list.write_text("\n".join(domains) + "\n", encoding="utf-8")
        for domain, labels in domains.items():
            if labels is not None:
                paths.san_file(domain).write_text(
                    "".join(f"{label}\n" for label in labels),
                    encoding="utf-8",
                )

    return _write


@pytest.fixture()
def write_profile(settings):
    def _write(data: dict) -> Path:
        path = settings.paths.request_profile
        path.write_text(yaml.safe_dump(data), encoding="utf-8")
        return path

    return _write


@pytest.fixture()
def install_key(settings, rsa_key):
    """Store the session RSA key as a domain key (avoids 4096-bit generation)."""

    def _install(domain: str) -> Path:
        path = settings.paths.key_file(domain)
        path.write_bytes(_pem_key(rsa_key))
        path.chmod(0o600)
        return path

    return _install


@pytest.fixture()
def install_account_key(settings, ca_key):
    def _install() -> Path:
        path = settings.paths.account_key
        path.write_bytes(_pem_key(ca_key))
        path.chmod(0o600)
        return path

    return _install


# ---------------------------------------------------------------------------
# Certificates
# ---------------------------------------------------------------------------


@pytest.fixture()
def make_cert(rsa_key, ca_key):
    """Factory for PEM certificates signed by a throw-away CA key."""

    def _make(  # noqa: PLR0913
        common_name: str,
        *,
        issuer_cn: str = "Let's Encrypt Authority X3",
        sans: list[str] | None = None,
        not_after: datetime | None = None,
        is_ca: bool = False,
        issuer_org: str | None = None,
    ) -> bytes:
        now = datetime.now(UTC)
        not_after = not_after or now + timedelta(days=90)
        subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
        issuer_attrs = []
        if issuer_org:
            issuer_attrs.append(x509.NameAttribute(NameOID.ORGANIZATION_NAME, issuer_org))
        issuer_attrs.append(x509.NameAttribute(NameOID.COMMON_NAME, issuer_cn))

        builder = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(x509.Name(issuer_attrs))
            .public_key(rsa_key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(min(now - timedelta(days=1), not_after - timedelta(days=1)))
            .not_valid_after(not_after)
            .add_extension(x509.BasicConstraints(ca=is_ca, path_length=None), critical=True)
        )
        if sans:
            builder = builder.add_extension(
                x509.SubjectAlternativeName([x509.DNSName(s) for s in sans]),
                critical=False,
            )
        if not is_ca:
            builder = builder.add_extension(
                x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]),
                critical=False,
            )
        cert = builder.sign(ca_key, hashes.SHA256())
        return cert.public_bytes(serialization.Encoding.PEM)

    return _make


@pytest.fixture()
def fixed_now() -> datetime:
    return datetime(2026, 3, 1, 12, 0, 0, 500000, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Logging isolation
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_getcerts_logger():
    """Undo ``configure_logging`` so caplog keeps seeing getcerts records."""
    logger = logging.getLogger("getcerts")
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate
