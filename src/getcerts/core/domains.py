"""Managed domain configuration.

``domain.txt`` lists the managed top-level domains, one per line; the
first line is the default domain.  ``<domain>-san.txt`` lists the
subject-alternative labels of one domain, relative to it
(``www`` means ``www.example.com``).

Blank lines and ``#`` comments are ignored in both files.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from getcerts.core.errors import ConfigurationError, DomainListMissingError, SanFileMissingError

if TYPE_CHECKING:
    from pathlib import Path

    from getcerts.config.settings import PathSettings

log = logging.getLogger(__name__)

# relative DNS labels only; wildcards cannot be validated over HTTP-01
_LABEL_RE = re.compile(r"^[A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?(\.[A-Za-z0-9-]+)*$")
_DOMAIN_RE = re.compile(
    r"^(?=.{1,253}$)([A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?\.)+[A-Za-z]{2,63}$",
)


@dataclass(frozen=True)
class DomainConfig:
    """One managed domain and its configured SAN labels."""

    name: str
    san_labels: tuple[str, ...] = ()

    @property
    def fqdns(self) -> list[str]:
        """The domain followed by every ``<label>.<domain>``, without duplicates."""
        seen: set[str] = set()
        result: list[str] = []
        for name in (self.name, *(f"{label}.{self.name}" for label in self.san_labels)):
            key = name.lower()
            if key not in seen:
                seen.add(key)
                result.append(name)
        return result


def _read_lines(path: Path) -> list[str]:
    lines = []
    with path.open(encoding="utf-8") as f:
        for raw in f:
            line = raw.split("#", 1)[0].strip()
            if line:
                lines.append(line)
    return lines


def read_domains(paths: PathSettings) -> list[str]:
    """Return the managed domains in file order.

    Raises
    ------
    DomainListMissingError
        If ``domain.txt`` does not exist or lists no domain.
    ConfigurationError
        If the file is not UTF-8 or a line is not a valid domain name.

    """
    domain_list = paths.domain_list
    try:
        domains = _read_lines(domain_list)
    except FileNotFoundError:
        raise DomainListMissingError(
            "domain list not found",
            path=domain_list,
        ) from None
    except OSError as exc:
        raise DomainListMissingError(
            f"cannot read domain list: {exc}",
            path=domain_list,
        ) from exc
    except UnicodeDecodeError as exc:
        raise ConfigurationError(
            f"domain list is not valid UTF-8: {exc.reason} at byte {exc.start}",
            path=domain_list,
        ) from exc

    if not domains:
        raise DomainListMissingError("domain list is empty", path=domain_list)

    for domain in domains:
        if not _DOMAIN_RE.match(domain):
            raise ConfigurationError(
                f"invalid domain name '{domain}'",
                path=domain_list,
            )
    return domains


def default_domain(paths: PathSettings) -> str:
    """The first domain of ``domain.txt``."""
    return read_domains(paths)[0]


def read_san_labels(paths: PathSettings, domain: str) -> tuple[str, ...]:
    """Return the SAN labels configured for *domain*.

    A missing SAN file is a configuration error; an empty one is valid
    and means the certificate covers the domain only.
    """
    san_file = paths.san_file(domain)
    try:
        labels = _read_lines(san_file)
    except FileNotFoundError:
        raise SanFileMissingError(
            "SAN file not found",
            domain=domain,
            path=san_file,
        ) from None
    except OSError as exc:
        raise SanFileMissingError(
            f"cannot read SAN file: {exc}",
            domain=domain,
            path=san_file,
        ) from exc
    except UnicodeDecodeError as exc:
        raise ConfigurationError(
            f"SAN file is not valid UTF-8: {exc.reason} at byte {exc.start}",
            domain=domain,
            path=san_file,
        ) from exc

    for label in labels:
        if not _LABEL_RE.match(label):
            raise ConfigurationError(
                f"invalid SAN label '{label}'",
                domain=domain,
                path=san_file,
            )
    if not labels:
        log.debug("SAN file %s is empty, certificate covers %s only", san_file, domain)
    return tuple(labels)


def load_domain(paths: PathSettings, domain: str) -> DomainConfig:
    """Build the :class:`DomainConfig` for *domain* from its SAN file."""
    return DomainConfig(name=domain, san_labels=read_san_labels(paths, domain))
