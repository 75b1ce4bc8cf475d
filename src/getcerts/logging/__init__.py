"""Logging subsystem for getcerts.

Public API::

    from getcerts.logging import configure_logging, bind_context

    configure_logging(settings.logging, verbosity=args.verbose)
    with bind_context(domain="example.com", action="install"):
        ...
"""

from getcerts.logging.setup import bind_context, configure_logging

__all__ = ["bind_context", "configure_logging"]
