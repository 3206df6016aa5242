from pricing_engine.models import StrategyName
from .base import IPricingStrategy, ResolutionContext


class PVPMStrategy(IPricingStrategy):
    """Sem preço fixo nem recomendação: publica o próprio PVPM"""

    def __init__(self):
        super().__init__(name=StrategyName.PVPM)

    def applies(self, ctx: ResolutionContext) -> bool:
        return True

    def get_price(self, ctx: ResolutionContext) -> float:
        return ctx.pvpm
