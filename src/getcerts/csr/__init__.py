"""Signing request generation, inspection and subject profile."""

from getcerts.csr.builder import CsrBuilder, CsrListing, build_san_list
from getcerts.csr.profile import RequestProfile, load_profile

__all__ = [
    "CsrBuilder",
    "CsrListing",
    "RequestProfile",
    "build_san_list",
    "load_profile",
]
