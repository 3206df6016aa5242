from .base import IPricingStrategy, ResolutionContext
from .fixed import FixedPriceStrategy
from .competitive import CompetitivePriceStrategy
from .pvpm_floor import PVPMStrategy

__all__ = [
    "IPricingStrategy",
    "ResolutionContext",
    "FixedPriceStrategy",
    "CompetitivePriceStrategy",
    "PVPMStrategy",
]
