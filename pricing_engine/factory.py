from typing import Dict, List

from pricing_engine.strategies import (
    IPricingStrategy,
    FixedPriceStrategy,
    CompetitivePriceStrategy,
    PVPMStrategy,
)


class PricingStrategyFactory:
    """
    Factory para instanciar estratégias de preço.

    A ordem do mapeamento é a ordem de prioridade usada na resolução:
    preço fixo, depois preço competitivo, depois PVPM.
    """

    # Mapeamento canônico: nome -> Strategy class (ordem = prioridade)
    _STRATEGIES: Dict[str, type] = {
        "fixed": FixedPriceStrategy,
        "competitive": CompetitivePriceStrategy,
        "pvpm": PVPMStrategy,
    }

    @classmethod
    def get(cls, name: str) -> IPricingStrategy:
        """
        Retorna a estratégia correspondente ao nome.

        Args:
            name: Nome da estratégia (case-insensitive)

        Returns:
            Instância de IPricingStrategy

        Raises:
            ValueError: Se a estratégia não existir
        """
        name_lower = name.lower().strip()

        strategy_class = cls._STRATEGIES.get(name_lower)

        if not strategy_class:
            supported = ", ".join(cls._STRATEGIES.keys())
            raise ValueError(
                f"Estratégia '{name}' não suportada. "
                f"Estratégias disponíveis: {supported}"
            )

        return strategy_class()

    @classmethod
    def get_ordered(cls) -> List[IPricingStrategy]:
        """Todas as estratégias, da maior para a menor prioridade"""
        return [strategy_class() for strategy_class in cls._STRATEGIES.values()]

    @classmethod
    def get_supported_strategies(cls) -> list:
        return list(cls._STRATEGIES.keys())

    @classmethod
    def is_supported(cls, name: str) -> bool:
        return name.lower().strip() in cls._STRATEGIES
