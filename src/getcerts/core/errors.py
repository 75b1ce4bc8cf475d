"""Exception hierarchy for the certificate lifecycle.

Every failure raised by getcerts derives from :class:`GetcertsError`.
Each class carries a stable :class:`~getcerts.core.types.ExitCode`
which the command-line boundary turns into the process exit status;
nothing below the CLI calls :func:`sys.exit`.

Usage::

    raise CsrMissingError("no signing request", domain=domain, path=csr_path)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, ClassVar

from getcerts.core.types import ExitCode

if TYPE_CHECKING:
    from pathlib import Path


class GetcertsError(Exception):
    """Base class for every getcerts failure.

    Parameters
    ----------
    detail:
        Human-readable description of the failure.
    domain:
        The domain being processed, when known.
    path:
        The file or directory involved, when known.
    step:
        The lifecycle step that failed (e.g. ``"backup"``).
    retryable:
        Whether the failure is transient and the operation may be retried.

    """

    exit_code: ClassVar[ExitCode] = ExitCode.FAILURE

    def __init__(
        self,
        detail: str,
        *,
        domain: str | None = None,
        path: str | Path | None = None,
        step: str | None = None,
        retryable: bool = False,
    ) -> None:
        self.detail = detail
        self.domain = domain
        self.path = str(path) if path is not None else None
        self.step = step
        self.retryable = retryable
        super().__init__(self._render())

    def _render(self) -> str:
        parts = []
        if self.domain:
            parts.append(f"[{self.domain}]")
        if self.step:
            parts.append(f"{self.step}:")
        parts.append(self.detail)
        if self.path:
            parts.append(f"({self.path})")
        return " ".join(parts)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationError(GetcertsError):
    """A required configuration file or directory is missing or invalid."""

    exit_code = ExitCode.CONFIG_INVALID


class ConfigValidationError(ConfigurationError):
    """Raised when schema or cross-field validation finds problems."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        body = "\n".join(f"  - {e}" for e in errors)
        super().__init__(f"Configuration validation failed:\n{body}")


class DomainListMissingError(ConfigurationError):
    exit_code = ExitCode.DOMAIN_LIST_MISSING


class SanFileMissingError(ConfigurationError):
    exit_code = ExitCode.SAN_FILE_MISSING


class RequestProfileError(ConfigurationError):
    exit_code = ExitCode.REQUEST_PROFILE_INVALID


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


class KeyStoreError(GetcertsError):
    """Private key generation or loading failed."""

    exit_code = ExitCode.KEY_GENERATION_FAILED


class KeyGenerationError(KeyStoreError):
    exit_code = ExitCode.KEY_GENERATION_FAILED


class KeyReadError(KeyStoreError):
    exit_code = ExitCode.KEY_READ_FAILED


# ---------------------------------------------------------------------------
# Certificate signing requests
# ---------------------------------------------------------------------------


class CsrError(GetcertsError):
    """A signing request is missing, unreadable or invalid."""

    exit_code = ExitCode.CSR_GENERATION_FAILED


class NoSanDefinedError(CsrError):
    exit_code = ExitCode.NO_SAN_DEFINED


class CsrGenerationError(CsrError):
    exit_code = ExitCode.CSR_GENERATION_FAILED


class CsrMissingError(CsrError):
    exit_code = ExitCode.CSR_MISSING


class CsrReadError(CsrError):
    exit_code = ExitCode.CSR_READ_FAILED


class CsrVerificationError(CsrError):
    exit_code = ExitCode.CSR_VERIFICATION_FAILED


# ---------------------------------------------------------------------------
# ACME protocol
# ---------------------------------------------------------------------------


class ChallengeError(GetcertsError):
    """ACME protocol failure.

    ``retryable`` distinguishes transient network trouble from a
    terminal rejection by the CA.
    """

    exit_code = ExitCode.ACME_REJECTED


class AcmeNetworkError(ChallengeError):
    """The CA could not be reached or answered with a server error."""

    exit_code = ExitCode.ACME_NETWORK

    def __init__(self, detail: str, **kwargs) -> None:
        kwargs.setdefault("retryable", True)
        super().__init__(detail, **kwargs)


class AcmeRejectedError(ChallengeError):
    """The CA returned a problem document for a request.

    Parameters
    ----------
    problem_type:
        The ``type`` URN of the RFC 7807 problem document, if any.
    status:
        HTTP status code of the response, if any.

    """

    exit_code = ExitCode.ACME_REJECTED

    def __init__(
        self,
        detail: str,
        *,
        problem_type: str | None = None,
        status: int | None = None,
        **kwargs,
    ) -> None:
        self.problem_type = problem_type
        self.status = status
        super().__init__(detail, **kwargs)


class ChallengeFailedError(ChallengeError):
    """An authorization or challenge reached the terminal ``invalid`` status."""

    exit_code = ExitCode.CHALLENGE_FAILED


class AcmeTimeoutError(ChallengeError):
    """Polling exhausted its attempts before a terminal status."""

    exit_code = ExitCode.ACME_TIMEOUT


# ---------------------------------------------------------------------------
# Certificates
# ---------------------------------------------------------------------------


class ChainParseError(GetcertsError):
    exit_code = ExitCode.CHAIN_PARSE_FAILED


class CertificateWriteError(GetcertsError):
    exit_code = ExitCode.CERTIFICATE_WRITE_FAILED


class CertificateMissingError(GetcertsError):
    exit_code = ExitCode.CERTIFICATE_MISSING


class CertificateReadError(GetcertsError):
    exit_code = ExitCode.CERTIFICATE_READ_FAILED


# ---------------------------------------------------------------------------
# Installation
# ---------------------------------------------------------------------------


class InstallError(GetcertsError):
    """One step of the installation failed; earlier steps are not undone."""

    exit_code = ExitCode.INSTALL_COPY_FAILED


class InstallBackupError(InstallError):
    exit_code = ExitCode.INSTALL_BACKUP_FAILED


class InstallAliasRemoveError(InstallError):
    exit_code = ExitCode.INSTALL_ALIAS_REMOVE_FAILED


class InstallCopyError(InstallError):
    exit_code = ExitCode.INSTALL_COPY_FAILED


class InstallAliasLinkError(InstallError):
    exit_code = ExitCode.INSTALL_ALIAS_LINK_FAILED


class InstallKeyError(InstallError):
    exit_code = ExitCode.INSTALL_KEY_FAILED


class InstallerReloadError(InstallError):
    """The web-server reload command failed.

    Certificate files are already swapped when this is raised; running
    the reload again is safe.
    """

    exit_code = ExitCode.INSTALL_RELOAD_FAILED
