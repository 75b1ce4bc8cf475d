"""Typed, frozen dataclasses for every configuration section.

This module is the **single source of truth** for default values.
JSON Schema defaults exist only for documentation -- these builders
are what the application actually reads.

One :class:`GetcertsSettings` value is built per invocation and passed
explicitly to every component; per-invocation overrides (staging,
minimum days left, ...) are applied with :func:`dataclasses.replace`.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path

LETSENCRYPT_DIRECTORY = "https://acme-v02.api.letsencrypt.org/directory"
LETSENCRYPT_STAGING_DIRECTORY = "https://acme-staging-v02.api.letsencrypt.org/directory"

_DEFAULT_HOME = "/home/acme"

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PathSettings:
    """Working directories, ACME challenge webroot and install targets."""

    home: Path
    key_dir: Path
    cert_dir: Path
    config_dir: Path
    account_key: Path
    challenge_dir: Path
    system_cert_dir: Path
    system_key_dir: Path
    request_profile: Path

    @property
    def domain_list(self) -> Path:
        return self.config_dir / "domain.txt"

    def san_file(self, domain: str) -> Path:
        return self.config_dir / f"{domain}-san.txt"

    def key_file(self, domain: str) -> Path:
        return self.key_dir / f"{domain}.key"

    def csr_file(self, domain: str) -> Path:
        return self.cert_dir / f"{domain}.csr"

    def cert_file(self, domain: str) -> Path:
        return self.cert_dir / f"{domain}.crt"


def _build_paths(data: dict | None, home: str | None = None) -> PathSettings:
    d = data or {}
    home_dir = Path(home or d.get("home", _DEFAULT_HOME))
    key_dir = Path(d.get("key_dir", home_dir / "keys"))
    config_dir = Path(d.get("config_dir", home_dir / "etc"))
    return PathSettings(
        home=home_dir,
        key_dir=key_dir,
        cert_dir=Path(d.get("cert_dir", home_dir / "certs")),
        config_dir=config_dir,
        account_key=Path(d.get("account_key", key_dir / "letsencrypt-account.key")),
        challenge_dir=Path(
            d.get("challenge_dir", "/var/www/acme/.well-known/acme-challenge"),
        ),
        system_cert_dir=Path(d.get("system_cert_dir", "/etc/pki/tls/certs")),
        system_key_dir=Path(d.get("system_key_dir", "/etc/pki/tls/private")),
        request_profile=Path(
            d.get("request_profile", config_dir / "request-profile.yaml"),
        ),
    )


# ---------------------------------------------------------------------------
# ACME
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AcmeSettings:
    """Upstream ACME directory selection, transport and polling."""

    directory_url: str
    staging_directory_url: str
    staging: bool
    timeout_seconds: int
    max_retries: int
    retry_delay_seconds: float
    poll_interval_seconds: float
    poll_max_attempts: int
    finalize_timeout_seconds: int
    self_check: bool
    user_agent: str

    @property
    def active_directory_url(self) -> str:
        """The directory for this invocation -- staging *or* production."""
        return self.staging_directory_url if self.staging else self.directory_url


def _build_acme(data: dict | None) -> AcmeSettings:
    d = data or {}
    return AcmeSettings(
        directory_url=d.get("directory_url", LETSENCRYPT_DIRECTORY),
        staging_directory_url=d.get(
            "staging_directory_url",
            LETSENCRYPT_STAGING_DIRECTORY,
        ),
        staging=d.get("staging", False),
        timeout_seconds=d.get("timeout_seconds", 15),
        max_retries=d.get("max_retries", 3),
        retry_delay_seconds=d.get("retry_delay_seconds", 2.0),
        poll_interval_seconds=d.get("poll_interval_seconds", 2.0),
        poll_max_attempts=d.get("poll_max_attempts", 30),
        finalize_timeout_seconds=d.get("finalize_timeout_seconds", 90),
        self_check=d.get("self_check", True),
        user_agent=d.get("user_agent", "getcerts"),
    )


# ---------------------------------------------------------------------------
# Keys / renewal / chain
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class KeySettings:
    rsa_key_size: int


def _build_keys(data: dict | None) -> KeySettings:
    d = data or {}
    return KeySettings(rsa_key_size=d.get("rsa_key_size", 4096))


@dataclass(frozen=True)
class RenewalSettings:
    min_days_left: int


def _build_renewal(data: dict | None) -> RenewalSettings:
    d = data or {}
    return RenewalSettings(min_days_left=d.get("min_days_left", 30))


@dataclass(frozen=True)
class ChainSettings:
    """How certificates in a CA bundle are classified and named."""

    placeholder_markers: tuple[str, ...]
    ca_markers: tuple[str, ...]
    intermediate_prefix: str
    raw_chain_name: str


def _build_chain(data: dict | None) -> ChainSettings:
    d = data or {}
    return ChainSettings(
        placeholder_markers=tuple(d.get("placeholder_markers", ["Fake", "Let's"])),
        ca_markers=tuple(d.get("ca_markers", ["let's encrypt", "lets", "fake le"])),
        intermediate_prefix=d.get("intermediate_prefix", "lets-encrypt-x1-cross-signed"),
        raw_chain_name=d.get("raw_chain_name", "signed_chain.crt"),
    )


# ---------------------------------------------------------------------------
# Install
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InstallSettings:
    """System-wide installation and web-server reload."""

    reload_command: tuple[str, ...]
    reload_timeout_seconds: int
    prune_stale_aliases: bool
    key_mode: int


def _build_install(data: dict | None) -> InstallSettings:
    d = data or {}
    key_mode = d.get("key_mode", 0o600)
    if isinstance(key_mode, str):
        key_mode = int(key_mode, 8)
    return InstallSettings(
        reload_command=tuple(d.get("reload_command", ["systemctl", "restart", "httpd"])),
        reload_timeout_seconds=d.get("reload_timeout_seconds", 120),
        prune_stale_aliases=d.get("prune_stale_aliases", False),
        key_mode=key_mode,
    )


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LoggingSettings:
    """Application logging configuration (level, format)."""

    level: str
    format: str


def _build_logging(data: dict | None) -> LoggingSettings:
    d = data or {}
    return LoggingSettings(
        level=d.get("level", "INFO"),
        format=d.get("format", "text"),
    )


# ---------------------------------------------------------------------------
# Root settings aggregate
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GetcertsSettings:
    paths: PathSettings
    acme: AcmeSettings
    keys: KeySettings
    renewal: RenewalSettings
    chain: ChainSettings
    install: InstallSettings
    logging: LoggingSettings

    def with_overrides(
        self,
        *,
        staging: bool | None = None,
        min_days_left: int | None = None,
    ) -> GetcertsSettings:
        """Return a copy with command-line overrides applied."""
        result = self
        if staging is not None:
            result = replace(result, acme=replace(result.acme, staging=staging))
        if min_days_left is not None:
            result = replace(
                result,
                renewal=replace(result.renewal, min_days_left=min_days_left),
            )
        return result


def build_settings(data: dict, *, home: str | None = None) -> GetcertsSettings:
    """Build the full typed settings tree from raw config data.

    Called once per invocation after schema validation and
    environment-variable resolution.  *home* overrides ``paths.home``
    and every path derived from it.
    """
    return GetcertsSettings(
        paths=_build_paths(data.get("paths"), home=home),
        acme=_build_acme(data.get("acme")),
        keys=_build_keys(data.get("keys")),
        renewal=_build_renewal(data.get("renewal")),
        chain=_build_chain(data.get("chain")),
        install=_build_install(data.get("install")),
        logging=_build_logging(data.get("logging")),
    )
