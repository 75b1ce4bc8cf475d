"""Expiry-based renewal decisions.

``days_left = floor((not_after - now) / 86400)``, clamped at zero for
expired certificates.  A renewal proceeds when it is forced, when no
certificate exists, or when ``days_left <= min_days_left``.  A declined
renewal is an ordinary :class:`RenewalDecision`, not an error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

    from cryptography import x509

log = logging.getLogger(__name__)

_SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class RenewalDecision:
    renew: bool
    days_left: int | None
    min_days_left: int
    forced: bool
    reason: str


def _utcnow() -> datetime:
    return datetime.now(UTC)


class RenewalPolicy:
    """Decide whether a certificate needs renewing.

    Parameters
    ----------
    clock:
        Returns the current aware UTC time (replaced in tests).

    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock

    def days_left(self, cert: x509.Certificate, now: datetime | None = None) -> int:
        now = now or self._clock()
        remaining = (cert.not_valid_after_utc - now).total_seconds()
        return max(0, int(remaining // _SECONDS_PER_DAY))

    def evaluate(
        self,
        cert: x509.Certificate | None,
        min_days_left: int,
        *,
        force: bool = False,
        now: datetime | None = None,
    ) -> RenewalDecision:
        days_left = self.days_left(cert, now) if cert is not None else None

        if force:
            reason = "renewal forced"
            renew = True
        elif days_left is None:
            reason = "no certificate exists"
            renew = True
        elif days_left <= min_days_left:
            reason = f"{days_left} days left, threshold is {min_days_left}"
            renew = True
        else:
            reason = f"not due for renewal: {days_left} days left, threshold is {min_days_left}"
            renew = False

        log.debug("Renewal decision: renew=%s (%s)", renew, reason)
        return RenewalDecision(
            renew=renew,
            days_left=days_left,
            min_days_left=min_days_left,
            forced=force,
            reason=reason,
        )

    def should_renew(
        self,
        cert: x509.Certificate | None,
        min_days_left: int,
        *,
        force: bool = False,
        now: datetime | None = None,
    ) -> bool:
        return self.evaluate(cert, min_days_left, force=force, now=now).renew
