"""Renewal decisions based on remaining certificate validity."""

from getcerts.renewal.policy import RenewalDecision, RenewalPolicy

__all__ = ["RenewalDecision", "RenewalPolicy"]
