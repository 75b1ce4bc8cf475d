"""Per-domain private key storage.

Keys are RSA, PEM-encoded PKCS#8 without a passphrase, and live in
``<key_dir>/<domain>.key`` with mode ``0600``.  Creating a key always
overwrites: callers that want to keep an existing key check
:meth:`KeyStore.exists` first.
"""

from __future__ import annotations

import logging
import os
import stat
from typing import TYPE_CHECKING

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from getcerts.core.errors import KeyGenerationError, KeyReadError
from getcerts.core.fileio import write_atomic

if TYPE_CHECKING:
    from pathlib import Path

    from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes

    from getcerts.config.settings import KeySettings, PathSettings

log = logging.getLogger(__name__)

_KEY_MODE = 0o600
_PUBLIC_EXPONENT = 65537


class KeyStore:
    """Generate and load the private keys of managed domains.

    Parameters
    ----------
    paths:
        Working directory layout.
    keys:
        Key generation parameters.

    """

    def __init__(self, paths: PathSettings, keys: KeySettings) -> None:
        self._paths = paths
        self._key_size = keys.rsa_key_size

    def key_path(self, domain: str) -> Path:
        return self._paths.key_file(domain)

    def exists(self, domain: str) -> bool:
        return self.key_path(domain).is_file()

    def create_key(self, domain: str) -> Path:
        """Generate a new RSA key for *domain*, replacing any existing one.

        Raises
        ------
        KeyGenerationError
            If key generation fails or the key file cannot be written.

        """
        path = self.key_path(domain)
        log.info("Generating %d-bit RSA key for %s", self._key_size, domain)
        try:
            key = rsa.generate_private_key(
                public_exponent=_PUBLIC_EXPONENT,
                key_size=self._key_size,
            )
            pem = key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption(),
            )
        except (ValueError, TypeError) as exc:
            raise KeyGenerationError(
                f"key generation failed: {exc}",
                domain=domain,
                path=path,
            ) from exc

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            write_atomic(path, pem, mode=_KEY_MODE)
        except OSError as exc:
            raise KeyGenerationError(
                f"cannot write key file: {exc.strerror or exc}",
                domain=domain,
                path=path,
            ) from exc

        log.info("Private key written to %s", path)
        return path

    def load_key(self, domain: str) -> PrivateKeyTypes:
        """Load the private key of *domain*."""
        return self._load(self.key_path(domain), domain=domain)

    def load_account_key(self) -> PrivateKeyTypes:
        """Load the ACME account key (already registered with the CA)."""
        return self._load(self._paths.account_key)

    @staticmethod
    def _load(path: Path, *, domain: str | None = None) -> PrivateKeyTypes:
        try:
            data = path.read_bytes()
        except FileNotFoundError:
            raise KeyReadError("private key not found", domain=domain, path=path) from None
        except OSError as exc:
            raise KeyReadError(
                f"cannot read private key: {exc.strerror or exc}",
                domain=domain,
                path=path,
            ) from exc

        try:
            key = serialization.load_pem_private_key(data, password=None)
        except (ValueError, TypeError) as exc:
            raise KeyReadError(
                f"cannot parse private key: {exc}",
                domain=domain,
                path=path,
            ) from exc

        if not isinstance(key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
            raise KeyReadError(
                f"unsupported key type {type(key).__name__}",
                domain=domain,
                path=path,
            )

        _check_key_permissions(path)
        return key


def _check_key_permissions(path: Path) -> None:
    """Warn if a private key file is readable or writable by group or others."""
    try:
        mode = os.stat(path).st_mode
    except OSError:
        return
    if mode & (stat.S_IRGRP | stat.S_IROTH | stat.S_IWGRP | stat.S_IWOTH):
        log.warning(
            "Private key file '%s' has overly permissive permissions (mode=%o). "
            "Recommend chmod 600.",
            path,
            stat.S_IMODE(mode),
        )
