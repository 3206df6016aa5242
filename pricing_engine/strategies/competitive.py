from pricing_engine.models import StrategyName
from .base import IPricingStrategy, ResolutionContext


class CompetitivePriceStrategy(IPricingStrategy):
    """
    Preço recomendado pela análise de concorrência (já limitado ao PVPM).

    Só se aplica com a automação liberada globalmente e no produto.
    """

    def __init__(self):
        super().__init__(name=StrategyName.COMPETITIVE)

    def applies(self, ctx: ResolutionContext) -> bool:
        return (
            ctx.automation_allowed
            and ctx.profile.auto_update_enabled
            and ctx.analysis is not None
            and ctx.analysis.recommended_price is not None
        )

    def get_price(self, ctx: ResolutionContext) -> float:
        return ctx.analysis.recommended_price
