"""System-wide installation of certificates and keys."""

from getcerts.install.installer import InstallReport, Installer, SanReconciliation

__all__ = ["InstallReport", "Installer", "SanReconciliation"]
