"""Signing-request subject profile.

``request-profile.yaml`` holds the distinguished-name fields shared by
every signing request; the common name and the SAN list are injected
per domain when the request is built::

    subject:
      country: DE
      state: Berlin
      locality: Berlin
      organization: Example GmbH
      organizational_unit: Operations
      email: hostmaster@example.com

A missing profile file means an empty template: the subject then
consists of the common name only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import jsonschema
import yaml
from cryptography import x509
from cryptography.x509.oid import NameOID

from getcerts.core.errors import RequestProfileError

if TYPE_CHECKING:
    from pathlib import Path

log = logging.getLogger(__name__)

_PROFILE_SCHEMA = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "subject": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "country": {"type": "string", "pattern": "^[A-Za-z]{2}$"},
                "state": {"type": "string", "minLength": 1},
                "locality": {"type": "string", "minLength": 1},
                "organization": {"type": "string", "minLength": 1},
                "organizational_unit": {"type": "string", "minLength": 1},
                "email": {"type": "string", "minLength": 3},
            },
        },
    },
}

# Subject field -> OID, in the order the RDNs are emitted
_FIELD_OIDS = (
    ("country", NameOID.COUNTRY_NAME),
    ("state", NameOID.STATE_OR_PROVINCE_NAME),
    ("locality", NameOID.LOCALITY_NAME),
    ("organization", NameOID.ORGANIZATION_NAME),
    ("organizational_unit", NameOID.ORGANIZATIONAL_UNIT_NAME),
)


@dataclass(frozen=True)
class RequestProfile:
    """Distinguished-name template for signing requests."""

    country: str | None = None
    state: str | None = None
    locality: str | None = None
    organization: str | None = None
    organizational_unit: str | None = None
    email: str | None = None

    def subject_for(self, common_name: str) -> x509.Name:
        """Return the full subject name with ``CN=<common_name>``."""
        attributes = [
            x509.NameAttribute(oid, value)
            for field, oid in _FIELD_OIDS
            if (value := getattr(self, field)) is not None
        ]
        attributes.append(x509.NameAttribute(NameOID.COMMON_NAME, common_name))
        if self.email is not None:
            attributes.append(x509.NameAttribute(NameOID.EMAIL_ADDRESS, self.email))
        return x509.Name(attributes)


def load_profile(path: Path) -> RequestProfile:
    """Load the request profile at *path*.

    Raises
    ------
    RequestProfileError
        If the file is unreadable, not valid YAML, or contains unknown
        or malformed fields.

    """
    try:
        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        log.debug("No request profile at %s, subject is CN only", path)
        return RequestProfile()
    except (OSError, yaml.YAMLError) as exc:
        raise RequestProfileError(
            f"cannot read request profile: {exc}",
            path=path,
        ) from exc

    if data is None:
        return RequestProfile()

    validator = jsonschema.Draft202012Validator(_PROFILE_SCHEMA)
    errors = sorted(validator.iter_errors(data), key=lambda e: list(e.absolute_path))
    if errors:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err.absolute_path) or '<root>'}: {err.message}"
            for err in errors
        )
        raise RequestProfileError(f"invalid request profile: {problems}", path=path)

    return RequestProfile(**(data.get("subject") or {}))
