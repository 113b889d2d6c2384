"""
Surge Pricing Module.
"""
from .surge import (
    SurgeConfig,
    SurgeChange,
    SurgeBanner,
    SurgeNotice,
    SurgeNotification,
    SurgePricingCalculator,
    SurgePricingInfo,
)

__all__ = [
    "SurgeConfig",
    "SurgeChange",
    "SurgeBanner",
    "SurgeNotice",
    "SurgeNotification",
    "SurgePricingCalculator",
    "SurgePricingInfo",
]
