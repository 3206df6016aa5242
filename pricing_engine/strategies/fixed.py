from typing import List

from pricing_engine.models import FLAG_FIXED_PRICE_BELOW_PVPM, StrategyName
from .base import IPricingStrategy, ResolutionContext


class FixedPriceStrategy(IPricingStrategy):
    """
    Preço fixo definido manualmente.

    Decisão comercial explícita: usado como está, mesmo abaixo do PVPM.
    """

    enforces_floor = False

    def __init__(self):
        super().__init__(name=StrategyName.FIXED)

    def applies(self, ctx: ResolutionContext) -> bool:
        return ctx.profile.has_fixed_price

    def get_price(self, ctx: ResolutionContext) -> float:
        return ctx.profile.fixed_price

    def get_flags(self, ctx: ResolutionContext, price: float) -> List[str]:
        if price < ctx.pvpm:
            return [FLAG_FIXED_PRICE_BELOW_PVPM]
        return []
