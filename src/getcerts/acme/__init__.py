"""ACME HTTP-01 client: challenge webroot and order flow."""

from getcerts.acme.client import AcmeClient, IssuedChain, account_jwk
from getcerts.acme.webroot import ChallengeWebroot

__all__ = [
    "AcmeClient",
    "ChallengeWebroot",
    "IssuedChain",
    "account_jwk",
]
