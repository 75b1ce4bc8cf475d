"""Per-domain private key storage."""

from getcerts.keys.store import KeyStore

__all__ = ["KeyStore"]
