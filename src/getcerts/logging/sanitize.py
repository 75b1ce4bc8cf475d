"""Redaction of key material in ACME debug logs.

ACME objects are logged at DEBUG level.  Before that happens, JWK
members carrying key numbers, base64 PEM bodies and the DER signing
request sent to ``finalize`` are masked; the shape of the message (key
type, curve, PEM label, URLs, statuses) survives.
"""

from __future__ import annotations

import re
from typing import Any

REDACTED = "[REDACTED]"

# members of a public or private JWK that hold key numbers
_KEY_NUMBERS = frozenset({"n", "e", "x", "y", "d", "p", "q", "dp", "dq", "qi", "k"})

# payload members carrying a base64url DER blob
_BLOB_MEMBERS = frozenset({"csr"})

_PEM_BLOCK = re.compile(
    r"(?P<begin>-----BEGIN [A-Z0-9 ]+-----)"
    r".*?"
    r"(?P<end>-----END [A-Z0-9 ]+-----)",
    re.DOTALL,
)


def sanitize_jwk(jwk: dict) -> dict:
    """Copy of *jwk* with ``kty``/``crv``/``alg`` kept and key numbers masked."""
    masked = dict(jwk)
    for member in _KEY_NUMBERS.intersection(masked):
        masked[member] = REDACTED
    return masked


def sanitize_pem(pem: str) -> str:
    """Mask the body of every PEM block in *pem*, keeping its armor lines."""
    return _PEM_BLOCK.sub(
        lambda block: f"{block['begin']}\n{REDACTED}\n{block['end']}",
        pem,
    )


def sanitize_for_logs(data: Any) -> Any:  # noqa: ANN401
    """Return *data* with key material masked, recursing into containers.

    A mapping that has a ``kty`` member is treated as a JWK.  Other
    mappings keep their keys; a ``csr`` member is masked whole.
    Scalars that are not strings pass through unchanged.
    """
    if isinstance(data, str):
        return sanitize_pem(data) if "-----BEGIN " in data else data
    if isinstance(data, (list, tuple)):
        return type(data)(sanitize_for_logs(item) for item in data)
    if not isinstance(data, dict):
        return data
    if "kty" in data:
        return sanitize_jwk(data)

    result = {}
    for member, value in data.items():
        result[member] = REDACTED if member in _BLOB_MEMBERS else sanitize_for_logs(value)
    return result
