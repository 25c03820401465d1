"""Subscription tier policy."""

from .tiers import DEFAULT_POLICY, Entitlement, TierPolicy, effective_tier, entitlement_for

__all__ = [
    "DEFAULT_POLICY",
    "Entitlement",
    "TierPolicy",
    "effective_tier",
    "entitlement_for",
]
