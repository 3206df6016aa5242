"""
Tabela de frete por peso usada no cálculo do PVPM.

As faixas da transportadora cobrem até 20 kg. Acima disso o custo é linear:
9.25 + (peso - 20) * 0.47, independentemente da tabela configurada.
"""
import logging
from typing import List, Optional, Tuple

from pricing_engine.errors import MissingShippingTierError
from pricing_engine.models import PricingConfig, ShippingTier

logger = logging.getLogger(__name__)


class ShippingTierTable:
    """Busca ordenada peso -> custo de frete"""

    OVERFLOW_THRESHOLD_KG = 20.0
    OVERFLOW_BASE_COST = 9.25
    OVERFLOW_COST_PER_KG = 0.47

    def __init__(self, tiers: List[ShippingTier], default_cost: Optional[float] = None):
        self.tiers = sorted(tiers, key=lambda tier: tier.max_weight_kg)
        self.default_cost = default_cost

    @classmethod
    def from_config(cls, config: PricingConfig) -> "ShippingTierTable":
        return cls(config.shipping_cost_table, config.default_shipping_cost)

    def overflow_cost(self, weight_kg: float) -> float:
        return self.OVERFLOW_BASE_COST + (weight_kg - self.OVERFLOW_THRESHOLD_KG) * self.OVERFLOW_COST_PER_KG

    def lookup(self, weight_kg: Optional[float]) -> float:
        """
        Custo de frete para o peso informado.

        Args:
            weight_kg: Peso em kg (None ou 0 quando desconhecido)

        Returns:
            Custo de frete

        Raises:
            MissingShippingTierError: Sem faixa aplicável e sem frete padrão
        """
        return self.lookup_with_source(weight_kg)[0]

    def lookup_with_source(self, weight_kg: Optional[float]) -> Tuple[float, str]:
        """Igual a lookup(), devolvendo também a origem do valor"""
        if not weight_kg or weight_kg <= 0:
            return self._unknown_weight_cost()

        if weight_kg > self.OVERFLOW_THRESHOLD_KG:
            return self.overflow_cost(weight_kg), "overflow"

        for tier in self.tiers:
            if weight_kg <= tier.max_weight_kg:
                return tier.cost, "weight_table"

        if self.default_cost is None:
            raise MissingShippingTierError(
                f"Nenhuma faixa de frete cobre {weight_kg} kg e não há frete padrão configurado"
            )
        logger.debug(f"Peso {weight_kg} kg acima da maior faixa, usando frete padrão")
        return self.default_cost, "default"

    def _unknown_weight_cost(self) -> Tuple[float, str]:
        # Sem peso: frete padrão; sem padrão, a menor faixa
        if self.default_cost is not None:
            return self.default_cost, "default"
        if self.tiers:
            return self.tiers[0].cost, "weight_table"
        raise MissingShippingTierError("Tabela de frete vazia e nenhum frete padrão configurado")
