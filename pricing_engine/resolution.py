import logging
from typing import List, Optional, Tuple

from pricing_engine.competitor import CompetitorAnalyzer
from pricing_engine.errors import PriceFloorViolationError, StaleCompetitorDataError
from pricing_engine.factory import PricingStrategyFactory
from pricing_engine.interface import IClock, SystemClock
from pricing_engine.models import (
    FLAG_AUTOMATION_PAUSED,
    FLAG_BUY_BOX_UNREACHABLE,
    FLAG_CHANNEL_PRICE_CONFLICT,
    FLAG_STALE_COMPETITOR_DATA,
    CompetitorOffer,
    PriceResolution,
    PricingConfig,
    ProductPricingProfile,
    StrategyPreview,
)
from pricing_engine.strategies import IPricingStrategy, ResolutionContext

logger = logging.getLogger(__name__)


class PriceResolutionEngine:
    """
    Decide o preço do marketplace para um produto.

    Estratégias em ordem estrita (a primeira aplicável vence):
    1. fixed: preço fixo do perfil, usado como está
    2. competitive: recomendação da concorrência, se auto_update_enabled
       no produto e a automação global permitir (chave geral e horário)
    3. pvpm: o próprio PVPM

    Nenhuma estratégia além do preço fixo pode ficar abaixo do PVPM; se isso
    acontecer é defeito de lógica e PriceFloorViolationError é lançado.
    Conflitos (dados de concorrência antigos, buy box inalcançável, regra de
    4% entre canais) voltam como flags junto de um preço válido.
    """

    def __init__(self, config: PricingConfig, clock: Optional[IClock] = None):
        self.config = config
        self.clock = clock or SystemClock()
        self.analyzer = CompetitorAnalyzer(config.competitor_settings)

    def build_context(
            self,
            pvpm: float,
            profile: ProductPricingProfile,
            offers: Optional[List[CompetitorOffer]] = None,
            storefront_price: Optional[float] = None,
            own_price: Optional[float] = None,
    ) -> Tuple[ResolutionContext, List[str]]:
        """Analisa a concorrência e monta o contexto comum a todas as estratégias"""
        flags: List[str] = []
        analysis = None

        if offers:
            try:
                self.analyzer.check_freshness(offers, self.clock.now())
                analysis = self.analyzer.analyze(own_price, offers, pvpm)
            except StaleCompetitorDataError as e:
                logger.warning(f"Dados de concorrência ignorados: {e}")
                flags.append(FLAG_STALE_COMPETITOR_DATA)

        if analysis is not None and not analysis.buy_box_reachable:
            flags.append(FLAG_BUY_BOX_UNREACHABLE)

        automation_allowed = self.config.automation_settings.allows_updates(self.clock.now())
        if not automation_allowed and analysis is not None and analysis.recommended_price is not None \
                and profile.auto_update_enabled:
            flags.append(FLAG_AUTOMATION_PAUSED)
            logger.info("Automação pausada ou fora do horário; recomendação da concorrência não aplicada")

        ctx = ResolutionContext(
            profile=profile,
            pvpm=pvpm,
            config=self.config,
            analysis=analysis,
            storefront_price=storefront_price,
            automation_allowed=automation_allowed,
        )
        return ctx, flags

    def resolve(
            self,
            pvpm: float,
            profile: ProductPricingProfile,
            offers: Optional[List[CompetitorOffer]] = None,
            own_price: Optional[float] = None,
            storefront_price: Optional[float] = None,
    ) -> PriceResolution:
        """
        Resolve o preço final.

        Args:
            pvpm: Piso calculado para o produto
            profile: Perfil de precificação
            offers: Ofertas do marketplace (None ou vazio = sem dados)
            own_price: Preço publicado atualmente no marketplace
            storefront_price: Preço atual da loja própria

        Returns:
            PriceResolution com preço, estratégia e flags
        """
        ctx, flags = self.build_context(pvpm, profile, offers, storefront_price, own_price)

        for strategy in PricingStrategyFactory.get_ordered():
            if strategy.applies(ctx):
                break

        price = strategy.get_price(ctx)
        flags.extend(strategy.get_flags(ctx, price))

        if strategy.enforces_floor and price < pvpm:
            raise PriceFloorViolationError(
                f"Estratégia '{strategy.name.value}' produziu {price:.4f}, abaixo do PVPM {pvpm:.4f}"
            )

        if self.violates_channel_gap(price, storefront_price):
            flags.append(FLAG_CHANNEL_PRICE_CONFLICT)
            logger.warning(
                f"Preço do marketplace {price:.2f} menos de "
                f"{self.config.channel_price_gap * 100:.0f}% acima da loja ({storefront_price:.2f})"
            )

        return PriceResolution(
            resolved_price=price,
            strategy_used=strategy.name,
            flags=flags,
            pvpm=pvpm,
            analysis=ctx.analysis,
        )

    def preview(
            self,
            strategy: IPricingStrategy,
            pvpm: float,
            profile: ProductPricingProfile,
            offers: Optional[List[CompetitorOffer]] = None,
            own_price: Optional[float] = None,
            storefront_price: Optional[float] = None,
    ) -> StrategyPreview:
        """Avalia uma estratégia isolada, ignorando a ordem de prioridade"""
        ctx, flags = self.build_context(pvpm, profile, offers, storefront_price, own_price)

        applies = strategy.applies(ctx)
        price = None
        if applies:
            price = strategy.get_price(ctx)
            flags.extend(strategy.get_flags(ctx, price))
            if self.violates_channel_gap(price, storefront_price):
                flags.append(FLAG_CHANNEL_PRICE_CONFLICT)

        return StrategyPreview(
            strategy=strategy.name,
            applies=applies,
            price=price,
            enforces_floor=strategy.enforces_floor,
            flags=flags,
            pvpm=pvpm,
        )

    def violates_channel_gap(self, marketplace_price: float, storefront_price: Optional[float]) -> bool:
        """Marketplace deve custar pelo menos channel_price_gap acima da loja"""
        if not storefront_price or storefront_price <= 0:
            return False
        return marketplace_price < storefront_price * (1 + self.config.channel_price_gap)
