"""Human-readable output of lifecycle results."""

from __future__ import annotations

from typing import TYPE_CHECKING, TextIO

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime
    from pathlib import Path

    from getcerts.certs.chain import SplitResult
    from getcerts.certs.inspect import CertificateInfo
    from getcerts.csr.builder import CsrListing
    from getcerts.install.installer import InstallReport
    from getcerts.renewal.policy import RenewalDecision


def _ts(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S UTC")


def lines(items: Iterable[str], out: TextIO) -> None:
    for item in items:
        print(item, file=out)


def domains(names: list[str], out: TextIO) -> None:
    """One domain per line; the first (default) one is marked."""
    for index, name in enumerate(names):
        print(f"{name}{'  (default)' if index == 0 else ''}", file=out)


def path(label: str, value: Path, out: TextIO) -> None:
    print(f"{label}: {value}", file=out)


def certificate(info: CertificateInfo, out: TextIO, *, days_left: int | None = None) -> None:
    print(f"Certificate: {info.path}", file=out)
    print(f"  Subject:    {info.subject}", file=out)
    print(f"  Issuer:     {info.issuer}", file=out)
    print(f"  Not before: {_ts(info.not_before)}", file=out)
    print(f"  Not after:  {_ts(info.not_after)}", file=out)
    if days_left is not None:
        print(f"  Days left:  {days_left}", file=out)
    if info.sans:
        print(f"  SANs:       {', '.join(info.sans)}", file=out)
    if info.purpose:
        print(f"  Purpose:    {', '.join(info.purpose)}", file=out)
    if info.is_staging:
        print("  Staging:    yes (not trusted by browsers)", file=out)


def csr(listing: CsrListing, out: TextIO) -> None:
    print(f"Subject: {listing.subject}", file=out)
    if listing.sans:
        print(f"Subject Alternative Names: {', '.join(listing.sans)}", file=out)


def decision(result: RenewalDecision, domain: str, out: TextIO) -> None:
    print(f"{domain}: {result.reason}", file=out)


def split(result: SplitResult, out: TextIO) -> None:
    leaf = result.leaf
    print(f"Leaf:         {leaf.path} (valid until {_ts(leaf.not_after)})", file=out)
    for stored in result.intermediates:
        print(f"Intermediate: {stored.path} ({stored.common_name})", file=out)


def install_report(report: InstallReport, out: TextIO) -> None:
    print(f"Installed:  {report.installed_path}", file=out)
    if report.backup_path is not None:
        print(f"Backup:     {report.backup_path}", file=out)
    for alias in report.aliases:
        print(f"Alias:      {alias}", file=out)
    print(f"Key:        {report.key_path}", file=out)
    rec = report.reconciliation
    if rec.stale:
        print(f"Stale SANs: {', '.join(rec.stale)}", file=out)
    if rec.missing and rec.embedded:
        print(f"New SANs:   {', '.join(rec.missing)}", file=out)
    print(f"Reloaded:   {'yes' if report.reloaded else 'no'}", file=out)


def config_problems(problems: list[str], out: TextIO) -> None:
    if not problems:
        print("Configuration OK", file=out)
        return
    for problem in problems:
        print(f"- {problem}", file=out)
