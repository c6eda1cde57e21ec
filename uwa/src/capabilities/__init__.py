"""Capability tiers."""

from .tiers import (
    SAFE_DEFAULT_TIER,
    TIERS,
    CapabilityTierGate,
    TierChange,
    TierCheck,
    TierDefinition,
    TierRecommendation,
)

__all__ = [
    "SAFE_DEFAULT_TIER",
    "TIERS",
    "CapabilityTierGate",
    "TierChange",
    "TierCheck",
    "TierDefinition",
    "TierRecommendation",
]
