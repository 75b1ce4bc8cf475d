"""Certificate inspection and chain splitting."""

from getcerts.certs.chain import ChainSplitter, SplitResult, StoredCertificate
from getcerts.certs.inspect import CertificateInfo, describe, inspect_file, load_certificate

__all__ = [
    "CertificateInfo",
    "ChainSplitter",
    "SplitResult",
    "StoredCertificate",
    "describe",
    "inspect_file",
    "load_certificate",
]
