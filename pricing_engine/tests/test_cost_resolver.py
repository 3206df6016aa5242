import pytest

from pricing_engine.cost_resolver import CostResolver, ValueSource, resolve_first
from pricing_engine.errors import InvalidCostError, InvalidMarginError
from pricing_engine.models import PricingConfig, ProductPricingProfile


def test_defaults_when_profile_is_empty():
    """Testa se sem sobrescritas valem custo do ERP, margem e frete globais"""
    resolver = CostResolver(PricingConfig())

    resolved = resolver.resolve(10.0, ProductPricingProfile(), weight_kg=2)

    assert resolved.cost == 10.0
    assert resolved.margin == 0.75
    assert resolved.shipping_cost == 4.57
    assert (resolved.cost_source, resolved.margin_source, resolved.shipping_source) == (
        "erp", "default", "weight_table",
    )


def test_profile_overrides_win_independently():
    """Testa se cada sobrescrita do perfil vence o valor global"""
    resolver = CostResolver(PricingConfig())
    profile = ProductPricingProfile(custom_cost=12.0, custom_shipping_cost=7.5)

    resolved = resolver.resolve(10.0, profile, weight_kg=2)

    assert resolved.cost == 12.0
    assert resolved.margin == 0.75
    assert resolved.shipping_cost == 7.5
    assert resolved.shipping_source == "custom"


def test_zero_custom_cost_falls_back_to_erp():
    """Testa se custo personalizado zero é tratado como não informado"""
    resolver = CostResolver(PricingConfig())

    cost, source = resolver.resolve_cost(10.0, ProductPricingProfile(custom_cost=0))

    assert (cost, source) == (10.0, "erp")


@pytest.mark.parametrize("margin", [0, -0.1, 1.5])
def test_invalid_custom_margin_raises(margin):
    """Testa se margem personalizada fora de (0, 1] falha"""
    resolver = CostResolver(PricingConfig())

    with pytest.raises(InvalidMarginError):
        resolver.resolve(10.0, ProductPricingProfile(custom_margin=margin))


def test_margin_of_one_is_accepted():
    """Testa se margem igual a 1 é válida (sem markup)"""
    resolver = CostResolver(PricingConfig())

    margin, source = resolver.resolve_margin(ProductPricingProfile(custom_margin=1))

    assert (margin, source) == (1, "custom")


def test_negative_cost_raises():
    """Testa se custo negativo falha"""
    resolver = CostResolver(PricingConfig())

    with pytest.raises(InvalidCostError):
        resolver.resolve(-1.0)


def test_missing_cost_raises():
    """Testa se produto sem custo algum falha"""
    resolver = CostResolver(PricingConfig())

    with pytest.raises(InvalidCostError):
        resolver.resolve(None)


def test_heavy_product_reports_overflow_source():
    """Testa se a origem do frete acima de 20 kg é informada"""
    resolver = CostResolver(PricingConfig())

    shipping_cost, source = resolver.resolve_shipping(ProductPricingProfile(), 25)

    assert shipping_cost == pytest.approx(11.60)
    assert source == "overflow"


def test_resolve_first_stops_at_first_accepted_source():
    """Testa se fontes após a primeira aceita não são lidas"""

    def never_read():
        raise AssertionError("fonte não deveria ser lida")

    sources = [
        ValueSource("a", lambda: None, lambda value: True),
        ValueSource("b", lambda: 0.0, lambda value: value > 0),
        ValueSource("c", lambda: 3.0, lambda value: value > 0),
        ValueSource("d", never_read, lambda value: True),
    ]

    assert resolve_first(sources) == (3.0, "c")
