from typing import Optional

from pricing_engine.cost_resolver import CostResolver
from pricing_engine.errors import PricingError
from pricing_engine.models import (
    PricingConfig,
    PriceBreakdown,
    ProductPricingProfile,
    ProductValidation,
    PVPMResult,
    PVPMSources,
    ValidationIssue,
)
from pricing_engine.rounding import round_money


class PVPMCalculator:
    """
    Calculadora do PVPM (preço de venda mínimo possível).

    Fórmula: ((custo / margem) * (1 + imposto)) + frete

    Sem estado próprio: o mesmo produto com a mesma configuração sempre gera
    o mesmo resultado. Valores ficam com precisão total; arredondamento só
    no breakdown.
    """

    def __init__(self, config: PricingConfig):
        self.config = config
        self.resolver = CostResolver(config)

    def calculate_base_price(self, cost: float, margin: float) -> float:
        return cost / margin

    def apply_tax(self, base_price: float, tax_rate: float) -> float:
        return base_price * (1 + tax_rate)

    def calculate(
            self,
            erp_cost: Optional[float],
            weight_kg: Optional[float] = None,
            profile: Optional[ProductPricingProfile] = None,
    ) -> PVPMResult:
        """
        Calcula o PVPM de um produto.

        Args:
            erp_cost: Custo vindo do ERP
            weight_kg: Peso do produto em kg
            profile: Perfil de precificação (sobrescritas por produto)

        Returns:
            PVPMResult com todos os componentes

        Raises:
            InvalidCostError, InvalidMarginError, MissingShippingTierError
        """
        resolved = self.resolver.resolve(erp_cost, profile, weight_kg)
        tax_rate = self.config.default_tax_rate

        base_price = self.calculate_base_price(resolved.cost, resolved.margin)
        price_with_tax = self.apply_tax(base_price, tax_rate)
        pvpm = price_with_tax + resolved.shipping_cost

        return PVPMResult(
            cost=resolved.cost,
            margin=resolved.margin,
            base_price=base_price,
            tax_rate=tax_rate,
            price_with_tax=price_with_tax,
            shipping_cost=resolved.shipping_cost,
            pvpm=pvpm,
            sources=PVPMSources(
                cost=resolved.cost_source,
                margin=resolved.margin_source,
                shipping=resolved.shipping_source,
            ),
        )

    def get_breakdown(self, result: PVPMResult) -> PriceBreakdown:
        steps = [
            {"label": "Custo do produto", "value": round_money(result.cost)},
            {"label": f"Margem ({result.margin * 100:.1f}%)", "value": round(result.margin, 4)},
            {"label": "Preço base (custo / margem)", "value": round_money(result.base_price)},
            {"label": f"Impostos ({result.tax_rate * 100:.0f}%)", "value": round_money(result.price_with_tax)},
            {"label": "Custo de frete", "value": round_money(result.shipping_cost)},
            {"label": "PVPM", "value": round_money(result.pvpm)},
        ]

        notes = [
            f"Fórmula: (({round_money(result.cost)} / {round(result.margin, 4)}) * {1 + result.tax_rate:g}) "
            f"+ {round_money(result.shipping_cost)} = {round_money(result.pvpm)}",
        ]
        if result.sources:
            notes.append(
                f"Origens: custo={result.sources.cost}, margem={result.sources.margin}, "
                f"frete={result.sources.shipping}"
            )

        return PriceBreakdown(steps=steps, notes=notes)

    def validate(
            self,
            erp_cost: Optional[float],
            weight_kg: Optional[float] = None,
            profile: Optional[ProductPricingProfile] = None,
    ) -> ProductValidation:
        """Lista os dados que impedem ou enfraquecem o cálculo do PVPM"""
        profile = profile or ProductPricingProfile()
        issues = []

        try:
            self.resolver.resolve_cost(erp_cost, profile)
        except PricingError as e:
            issues.append(ValidationIssue(
                field="cost",
                message=str(e),
                suggestion="Informar o custo no ERP ou um custo personalizado",
            ))

        try:
            self.resolver.resolve_margin(profile)
        except PricingError as e:
            issues.append(ValidationIssue(
                field="margin",
                message=str(e),
                suggestion="Ajustar a margem personalizada ou usar a margem padrão",
            ))

        if not weight_kg and not profile.custom_shipping_cost:
            issues.append(ValidationIssue(
                field="shipping",
                message="Sem peso nem frete personalizado; será usado o frete padrão",
                suggestion="Informar o peso ou um frete personalizado",
                blocking=False,
            ))
        try:
            self.resolver.resolve_shipping(profile, weight_kg)
        except PricingError as e:
            issues.append(ValidationIssue(field="shipping", message=str(e)))

        return ProductValidation(is_valid=not any(issue.blocking for issue in issues), issues=issues)
