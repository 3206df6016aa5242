from typing import Callable, List, NamedTuple, Optional, Tuple

from pydantic import BaseModel

from pricing_engine.errors import InvalidCostError, InvalidMarginError
from pricing_engine.models import PricingConfig, ProductPricingProfile
from pricing_engine.shipping import ShippingTierTable


class ValueSource(NamedTuple):
    """Fonte candidata para um componente do PVPM, avaliada sob demanda"""
    name: str
    read: Callable[[], Optional[float]]
    accepts: Callable[[float], bool]


def _positive(value: float) -> bool:
    return value > 0


def _any_value(value: float) -> bool:
    return True


def resolve_first(sources: List[ValueSource]) -> Tuple[Optional[float], Optional[str]]:
    """Primeira fonte presente e aceita, da esquerda para a direita"""
    for source in sources:
        value = source.read()
        if value is not None and source.accepts(value):
            return value, source.name
    return None, None


class ResolvedCosts(BaseModel):
    cost: float
    margin: float
    shipping_cost: float
    cost_source: str
    margin_source: str
    shipping_source: str


class CostResolver:
    """
    Resolve custo, margem e frete de um produto.

    Cada componente tem sua própria cadeia de fontes: o valor do perfil do
    produto vence o valor global. Custo e frete personalizados só valem
    quando > 0 (zero significa "não informado" no cadastro importado).
    A margem personalizada vale sempre que preenchida e é validada depois.
    """

    def __init__(self, config: PricingConfig):
        self.config = config
        self.shipping_table = ShippingTierTable.from_config(config)

    def cost_sources(self, erp_cost: Optional[float], profile: ProductPricingProfile) -> List[ValueSource]:
        return [
            ValueSource("custom", lambda: profile.custom_cost, _positive),
            ValueSource("erp", lambda: erp_cost, _any_value),
        ]

    def margin_sources(self, profile: ProductPricingProfile) -> List[ValueSource]:
        return [
            ValueSource("custom", lambda: profile.custom_margin, _any_value),
            ValueSource("default", lambda: self.config.default_margin, _any_value),
        ]

    def shipping_sources(self, profile: ProductPricingProfile, weight_kg: Optional[float]) -> List[ValueSource]:
        return [
            ValueSource("custom", lambda: profile.custom_shipping_cost, _positive),
            ValueSource("table", lambda: self.shipping_table.lookup(weight_kg), _any_value),
        ]

    def resolve_cost(self, erp_cost: Optional[float], profile: ProductPricingProfile) -> Tuple[float, str]:
        cost, source = resolve_first(self.cost_sources(erp_cost, profile))
        if cost is None:
            raise InvalidCostError("Produto sem custo de ERP nem custo personalizado")
        if cost < 0:
            raise InvalidCostError(f"Custo não pode ser negativo: {cost}")
        return cost, source

    def resolve_margin(self, profile: ProductPricingProfile) -> Tuple[float, str]:
        margin, source = resolve_first(self.margin_sources(profile))
        if margin is None or margin <= 0 or margin > 1:
            raise InvalidMarginError(f"Margem deve estar entre 0 (exclusivo) e 1: {margin}")
        return margin, source

    def resolve_shipping(self, profile: ProductPricingProfile, weight_kg: Optional[float]) -> Tuple[float, str]:
        shipping_cost, source = resolve_first(self.shipping_sources(profile, weight_kg))
        if source == "table":
            # detalha a origem real (faixa, fórmula acima de 20 kg ou padrão)
            shipping_cost, source = self.shipping_table.lookup_with_source(weight_kg)
        return shipping_cost, source

    def resolve(
            self,
            erp_cost: Optional[float],
            profile: Optional[ProductPricingProfile] = None,
            weight_kg: Optional[float] = None,
    ) -> ResolvedCosts:
        profile = profile or ProductPricingProfile()

        cost, cost_source = self.resolve_cost(erp_cost, profile)
        margin, margin_source = self.resolve_margin(profile)
        shipping_cost, shipping_source = self.resolve_shipping(profile, weight_kg)

        return ResolvedCosts(
            cost=cost,
            margin=margin,
            shipping_cost=shipping_cost,
            cost_source=cost_source,
            margin_source=margin_source,
            shipping_source=shipping_source,
        )
