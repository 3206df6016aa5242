from .errors import (
    PricingError,
    InvalidCostError,
    InvalidMarginError,
    MissingShippingTierError,
    StaleCompetitorDataError,
    PriceFloorViolationError,
    InvalidFixedPriceError,
    ProductNotFoundError,
    ConcurrentUpdateError,
    CompetitorDataSourceError,
)
from .models import (
    Channel,
    PriceChangeReason,
    StrategyName,
    PricingConfig,
    AutomationSettings,
    PricingStatus,
    ProductPricingProfile,
    PVPMResult,
    PriceResolution,
    PriceChangeRecord,
    BatchResult,
)
from .pvpm import PVPMCalculator
from .resolution import PriceResolutionEngine
from .factory import PricingStrategyFactory
from .service import PricingService

__all__ = [
    "PricingError",
    "InvalidCostError",
    "InvalidMarginError",
    "MissingShippingTierError",
    "StaleCompetitorDataError",
    "PriceFloorViolationError",
    "InvalidFixedPriceError",
    "ProductNotFoundError",
    "ConcurrentUpdateError",
    "CompetitorDataSourceError",
    "Channel",
    "PriceChangeReason",
    "StrategyName",
    "PricingConfig",
    "AutomationSettings",
    "PricingStatus",
    "ProductPricingProfile",
    "PVPMResult",
    "PriceResolution",
    "PriceChangeRecord",
    "BatchResult",
    "PVPMCalculator",
    "PriceResolutionEngine",
    "PricingStrategyFactory",
    "PricingService",
]
