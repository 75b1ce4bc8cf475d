"""Configuration subsystem for getcerts.

Public API::

    from getcerts.config import load_settings

    settings = load_settings("getcerts.yaml", home="/home/acme")
    settings.paths.cert_dir            # typed access
    settings.with_overrides(staging=True)
"""

from getcerts.config.loader import load_settings
from getcerts.config.settings import (
    AcmeSettings,
    ChainSettings,
    GetcertsSettings,
    InstallSettings,
    KeySettings,
    LoggingSettings,
    PathSettings,
    RenewalSettings,
    build_settings,
)

__all__ = [
    "AcmeSettings",
    "ChainSettings",
    "GetcertsSettings",
    "InstallSettings",
    "KeySettings",
    "LoggingSettings",
    "PathSettings",
    "RenewalSettings",
    "build_settings",
    "load_settings",
]
