from abc import ABC, abstractmethod
from typing import List, Optional

from pydantic import BaseModel

from pricing_engine.models import CompetitorAnalysis, PricingConfig, ProductPricingProfile, StrategyName


class ResolutionContext(BaseModel):
    """Entradas de uma decisão de preço para um produto"""
    profile: ProductPricingProfile
    pvpm: float
    config: PricingConfig
    analysis: Optional[CompetitorAnalysis] = None
    storefront_price: Optional[float] = None
    automation_allowed: bool = True  # chave geral e janela de operação


class IPricingStrategy(ABC):
    """
    Interface para estratégias de preço do marketplace.

    O motor avalia as estratégias em ordem de prioridade e usa a primeira
    aplicável. enforces_floor indica se o preço devolvido deve respeitar o PVPM.
    """

    enforces_floor = True

    def __init__(self, name: StrategyName):
        self.name = name

    @abstractmethod
    def applies(self, ctx: ResolutionContext) -> bool:
        """
        Indica se a estratégia pode decidir o preço neste contexto.

        Args:
            ctx: Perfil, PVPM, configuração e análise de concorrência

        Returns:
            True se a estratégia deve ser usada
        """
        pass

    @abstractmethod
    def get_price(self, ctx: ResolutionContext) -> float:
        """Preço proposto pela estratégia (precisão total)"""
        pass

    def get_flags(self, ctx: ResolutionContext, price: float) -> List[str]:
        """Sinais para revisão do operador associados ao preço escolhido"""
        return []
