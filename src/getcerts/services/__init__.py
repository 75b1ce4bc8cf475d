"""Certificate lifecycle service layer.

Public API::

    from getcerts.services import CertificateLifecycle
"""

from getcerts.services.lifecycle import CertificateLifecycle

__all__ = ["CertificateLifecycle"]
