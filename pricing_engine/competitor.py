import logging
from datetime import datetime, timedelta
from typing import List, Optional

from pricing_engine.errors import StaleCompetitorDataError
from pricing_engine.interface import as_utc
from pricing_engine.models import CompetitorAnalysis, CompetitorOffer, CompetitorSettings

logger = logging.getLogger(__name__)


def sort_offers(offers: List[CompetitorOffer]) -> List[CompetitorOffer]:
    """Menor preço primeiro; em empate, quem tem o buy box vem antes"""
    return sorted(offers, key=lambda offer: (offer.price, not offer.has_buy_box))


class CompetitorAnalyzer:
    """
    Interpreta as ofertas do marketplace para um produto.

    A recomendação tenta ficar min_price_difference abaixo do concorrente mais
    barato sem nunca descer do PVPM. Quando o concorrente já está no PVPM ou
    abaixo dele, não há recomendação: o buy box não é alcançável sem violar
    o piso, e isso é sinalizado em buy_box_reachable.
    """

    def __init__(self, settings: CompetitorSettings):
        self.settings = settings

    def check_freshness(self, offers: List[CompetitorOffer], now: datetime) -> None:
        """
        Raises:
            StaleCompetitorDataError: Se a observação mais recente for mais
                antiga que price_update_frequency_minutes
        """
        observed = [as_utc(offer.observed_at) for offer in offers if offer.observed_at is not None]
        if not observed:
            return

        newest = max(observed)
        max_age = timedelta(minutes=self.settings.price_update_frequency_minutes)
        if as_utc(now) - newest > max_age:
            raise StaleCompetitorDataError(
                f"Ofertas observadas em {newest.isoformat()} excedem "
                f"{self.settings.price_update_frequency_minutes} minutos",
                observed_at=newest,
                max_age_minutes=self.settings.price_update_frequency_minutes,
            )

    def analyze(
            self,
            own_price: Optional[float],
            offers: List[CompetitorOffer],
            pvpm: float,
    ) -> CompetitorAnalysis:
        ordered = sort_offers(offers)

        has_buy_box = any(offer.is_own_offer and offer.has_buy_box for offer in ordered)
        competitors = [offer for offer in ordered if not offer.is_own_offer]
        lowest = competitors[0].price if competitors else None

        recommended = None
        reachable = True
        if lowest is not None:
            if lowest > pvpm:
                recommended = max(lowest - self.settings.min_price_difference, pvpm)
            else:
                reachable = False
                logger.debug(f"Concorrente a {lowest:.2f} não supera o PVPM {pvpm:.2f}")

        own_price_gap = None
        if own_price is not None and lowest is not None:
            own_price_gap = own_price - lowest

        return CompetitorAnalysis(
            has_buy_box=has_buy_box,
            lowest_competitor_price=lowest,
            recommended_price=recommended,
            buy_box_reachable=reachable,
            competitor_count=len(competitors),
            own_price_gap=own_price_gap,
        )
