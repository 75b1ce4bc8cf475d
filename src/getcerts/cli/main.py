"""getcerts command-line entry point.

Usage::

    getcerts                                  # list-certificates for every domain
    getcerts -D example.com create-csr
    getcerts -S -D example.com get-certificates
    getcerts -c /home/acme/etc/getcerts.yaml -m 20 auto-generate
    getcerts install
    python -m getcerts -D example.com info

Without ``-D`` a per-domain action runs for every domain in
``domain.txt``, one after another, stopping at the first failure.

This is the only place where outcomes become process exit statuses:
:class:`~getcerts.core.errors.GetcertsError` carries its ``exit_code``,
and a declined renewal maps to ``ExitCode.RENEWAL_NOT_DUE``.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import TYPE_CHECKING, TextIO

from getcerts.cli import render
from getcerts.core.errors import GetcertsError
from getcerts.core.types import Action, ExitCode
from getcerts.logging import bind_context
from getcerts.renewal.policy import RenewalDecision

if TYPE_CHECKING:
    from collections.abc import Callable

    from getcerts.certs.chain import SplitResult
    from getcerts.services.lifecycle import CertificateLifecycle

    Handler = Callable[[CertificateLifecycle, str, argparse.Namespace, TextIO], ExitCode]

log = logging.getLogger(__name__)


def _get_version() -> str:
    from getcerts import __version__

    return __version__


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="getcerts",
        description="Issue, renew and install Let's Encrypt certificates via ACME HTTP-01.",
    )
    parser.add_argument(
        "-c",
        "--config",
        metavar="PATH",
        default=None,
        help="Configuration file (YAML or JSON). Built-in defaults when omitted.",
    )
    parser.add_argument(
        "-H",
        "--home",
        metavar="DIR",
        default=None,
        help="Installation home; overrides paths.home.",
    )
    parser.add_argument(
        "-D",
        "--domain",
        metavar="DOMAIN",
        default=None,
        help="Process this domain only (default: every domain in domain.txt).",
    )
    parser.add_argument(
        "-F",
        "--force",
        action="store_true",
        default=False,
        help="Renew regardless of remaining validity; allow overwriting an existing key.",
    )
    parser.add_argument(
        "-S",
        "--staging",
        action="store_true",
        default=False,
        help="Use the ACME staging directory.",
    )
    parser.add_argument(
        "-m",
        "--min-days-left",
        metavar="DAYS",
        type=int,
        default=None,
        help="Renew when this many days of validity or fewer remain.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Verbose output (debug logging, SAN lists).",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {_get_version()}",
    )
    parser.add_argument(
        "action",
        nargs="?",
        default=Action.LIST_CERTIFICATES.value,
        choices=[a.value for a in Action],
        help="Operation to run (default: %(default)s).",
    )
    return parser


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def _list_certificates(lifecycle, domain, args, out) -> ExitCode:
    info = lifecycle.list_certificate(domain)
    render.certificate(info, out, days_left=lifecycle.renewal_decision(domain).days_left)
    return ExitCode.OK


def _list_domains(lifecycle, domain, args, out) -> ExitCode:
    render.domains(lifecycle.list_domains(), out)
    return ExitCode.OK


def _default_domain(lifecycle, domain, args, out) -> ExitCode:
    print(lifecycle.default_domain(), file=out)
    return ExitCode.OK


def _list_sans(lifecycle, domain, args, out) -> ExitCode:
    render.lines(lifecycle.list_sans(domain), out)
    return ExitCode.OK


def _create_key(lifecycle, domain, args, out) -> ExitCode:
    if lifecycle.key_exists(domain) and not args.force:
        log.error("A private key for %s already exists; use --force to replace it", domain)
        return ExitCode.USAGE
    render.path("Private key", lifecycle.create_key(domain), out)
    return ExitCode.OK


def _create_csr(lifecycle, domain, args, out) -> ExitCode:
    render.path("Signing request", lifecycle.create_csr(domain), out)
    return ExitCode.OK


def _list_csr(lifecycle, domain, args, out) -> ExitCode:
    render.csr(lifecycle.list_csr(domain, verbose=args.verbose > 0), out)
    return ExitCode.OK


def _verify_csr(lifecycle, domain, args, out) -> ExitCode:
    render.csr(lifecycle.verify_csr(domain), out)
    print("Signature OK", file=out)
    return ExitCode.OK


def _render_issuance(outcome: RenewalDecision | SplitResult, domain: str, out) -> ExitCode:
    if isinstance(outcome, RenewalDecision):
        render.decision(outcome, domain, out)
        return ExitCode.RENEWAL_NOT_DUE
    render.split(outcome, out)
    return ExitCode.OK


def _get_certificates(lifecycle, domain, args, out) -> ExitCode:
    return _render_issuance(lifecycle.get_certificate(domain, force=args.force), domain, out)


def _auto_generate(lifecycle, domain, args, out) -> ExitCode:
    return _render_issuance(lifecycle.auto_generate(domain, force=args.force), domain, out)


def _install(lifecycle, domain, args, out) -> ExitCode:
    render.install_report(lifecycle.install(domain), out)
    return ExitCode.OK


def _reload(lifecycle, domain, args, out) -> ExitCode:
    lifecycle.reload()
    print("Web server reloaded", file=out)
    return ExitCode.OK


def _info(lifecycle, domain, args, out) -> ExitCode:
    render.certificate(lifecycle.list_installed(domain), out)
    return ExitCode.OK


def _config(lifecycle, domain, args, out) -> ExitCode:
    problems = lifecycle.verify_config()
    render.config_problems(problems, out)
    return ExitCode.CONFIG_INVALID if problems else ExitCode.OK


_HANDLERS: dict[Action, Handler] = {
    Action.LIST_CERTIFICATES: _list_certificates,
    Action.LIST_DOMAINS: _list_domains,
    Action.DEFAULT_DOMAIN: _default_domain,
    Action.LIST_SANS: _list_sans,
    Action.CREATE_KEY: _create_key,
    Action.CREATE_CSR: _create_csr,
    Action.LIST_CSR: _list_csr,
    Action.VERIFY_CSR: _verify_csr,
    Action.GET_CERTIFICATES: _get_certificates,
    Action.AUTO_GENERATE: _auto_generate,
    Action.INSTALL: _install,
    Action.RELOAD: _reload,
    Action.INFO: _info,
    Action.CONFIG: _config,
}

# Actions that do not operate on a single domain
_GLOBAL_ACTIONS = frozenset(
    {Action.LIST_DOMAINS, Action.DEFAULT_DOMAIN, Action.RELOAD, Action.CONFIG},
)


def dispatch(
    lifecycle: CertificateLifecycle,
    action: Action,
    args: argparse.Namespace,
    out: TextIO,
) -> ExitCode:
    """Run *action* once, or once per domain, and return the final status.

    Per-domain runs stop at the first failure.  A declined renewal is
    not a failure: the run continues, and ``RENEWAL_NOT_DUE`` is only
    returned when no domain was renewed.
    """
    handler = _HANDLERS[action]
    if action in _GLOBAL_ACTIONS:
        with bind_context(action=action.value):
            return handler(lifecycle, "", args, out)

    domains = [args.domain] if args.domain else lifecycle.list_domains()
    codes = []
    for domain in domains:
        with bind_context(domain=domain, action=action.value):
            code = handler(lifecycle, domain, args, out)
        if code not in (ExitCode.OK, ExitCode.RENEWAL_NOT_DUE):
            return code
        codes.append(code)

    if codes and all(code == ExitCode.RENEWAL_NOT_DUE for code in codes):
        return ExitCode.RENEWAL_NOT_DUE
    return ExitCode.OK


def run(argv: list[str] | None = None, *, out: TextIO | None = None) -> int:
    """Parse *argv*, run the requested action and return the exit status."""
    from getcerts.config import load_settings
    from getcerts.logging import configure_logging
    from getcerts.services.lifecycle import CertificateLifecycle

    out = out or sys.stdout
    parser = _build_parser()
    args = parser.parse_args(argv)

    # -- bootstrap logging early (basic stderr until config is loaded) ---
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="getcerts: %(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    # -- load & validate config ---
    try:
        settings = load_settings(args.config, home=args.home)
    except GetcertsError as exc:
        print(f"getcerts: {exc}", file=sys.stderr)
        return int(exc.exit_code)

    settings = settings.with_overrides(
        staging=True if args.staging else None,
        min_days_left=args.min_days_left,
    )

    # -- replace bootstrap logging with configured logging ---
    configure_logging(settings.logging, verbosity=args.verbose)

    lifecycle = CertificateLifecycle(settings)
    try:
        return int(dispatch(lifecycle, Action(args.action), args, out))
    except GetcertsError as exc:
        log.error("%s", exc)  # noqa: TRY400
        log.debug("Failure details", exc_info=True)
        return int(exc.exit_code)


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    sys.exit(run(argv))
