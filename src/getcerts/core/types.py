"""Enumerated types shared across getcerts.

String enums inherit from ``StrEnum`` so their ``.value`` is the exact
string used on the command line and in log records.
:class:`ExitCode` is an :class:`enum.IntEnum` -- the stable process
exit statuses automation can branch on.
"""

from __future__ import annotations

from enum import IntEnum, StrEnum

# ---------------------------------------------------------------------------
# Certificates
# ---------------------------------------------------------------------------


class CertificateRole(StrEnum):
    LEAF = "leaf"
    INTERMEDIATE = "intermediate"


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


class Action(StrEnum):
    """Every operation the command line can dispatch.

    New operations are added here and registered in the CLI dispatch
    table; nothing else matches on action names.
    """

    LIST_CERTIFICATES = "list-certificates"
    LIST_DOMAINS = "list-domains"
    DEFAULT_DOMAIN = "default-domain"
    LIST_SANS = "list-sans"
    CREATE_KEY = "create-key"
    CREATE_CSR = "create-csr"
    LIST_CSR = "list-csr"
    VERIFY_CSR = "verify-csr"
    GET_CERTIFICATES = "get-certificates"
    AUTO_GENERATE = "auto-generate"
    INSTALL = "install"
    RELOAD = "reload"
    INFO = "info"
    CONFIG = "config"


# ---------------------------------------------------------------------------
# Exit statuses
# ---------------------------------------------------------------------------


class ExitCode(IntEnum):
    OK = 0
    FAILURE = 1
    USAGE = 2
    CONFIG_INVALID = 3
    RENEWAL_NOT_DUE = 4
    # configuration files
    DOMAIN_LIST_MISSING = 10
    SAN_FILE_MISSING = 11
    REQUEST_PROFILE_INVALID = 12
    # keys
    KEY_GENERATION_FAILED = 13
    KEY_READ_FAILED = 14
    # signing requests
    NO_SAN_DEFINED = 15
    CSR_GENERATION_FAILED = 16
    CSR_MISSING = 17
    CSR_READ_FAILED = 18
    CSR_VERIFICATION_FAILED = 19
    # ACME
    ACME_NETWORK = 20
    ACME_REJECTED = 21
    CHALLENGE_FAILED = 22
    ACME_TIMEOUT = 23
    # certificates
    CHAIN_PARSE_FAILED = 24
    CERTIFICATE_WRITE_FAILED = 25
    CERTIFICATE_MISSING = 26
    CERTIFICATE_READ_FAILED = 27
    # installation
    INSTALL_BACKUP_FAILED = 30
    INSTALL_ALIAS_REMOVE_FAILED = 31
    INSTALL_COPY_FAILED = 32
    INSTALL_ALIAS_LINK_FAILED = 33
    INSTALL_KEY_FAILED = 34
    INSTALL_RELOAD_FAILED = 35
