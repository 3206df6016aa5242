from datetime import datetime, timedelta, timezone

import pytest

from pricing_engine.errors import PriceFloorViolationError
from pricing_engine.models import (
    FLAG_AUTOMATION_PAUSED,
    FLAG_BUY_BOX_UNREACHABLE,
    FLAG_CHANNEL_PRICE_CONFLICT,
    FLAG_FIXED_PRICE_BELOW_PVPM,
    FLAG_STALE_COMPETITOR_DATA,
    CompetitorAnalysis,
    CompetitorOffer,
    PricingConfig,
    ProductPricingProfile,
    StrategyName,
)
from pricing_engine.resolution import PriceResolutionEngine
from pricing_engine.strategies import CompetitivePriceStrategy, FixedPriceStrategy, PVPMStrategy

PVPM = 20.313333333333333
NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def competitor(price, observed_at=None):
    return CompetitorOffer(seller_id="rival", price=price, observed_at=observed_at)


@pytest.fixture
def engine(clock):
    return PriceResolutionEngine(PricingConfig(), clock)


def test_fixed_price_always_wins(engine):
    """Testa se o preço fixo vence concorrência e PVPM"""
    profile = ProductPricingProfile(fixed_price=49.99, fixed_price_reason="promo")

    resolution = engine.resolve(PVPM, profile, offers=[competitor(30.0)])

    assert resolution.resolved_price == 49.99
    assert resolution.strategy_used == StrategyName.FIXED
    assert resolution.flags == []


def test_competitive_price_when_auto_update_enabled(engine):
    """Testa se a recomendação da concorrência é usada com auto update"""
    resolution = engine.resolve(PVPM, ProductPricingProfile(), offers=[competitor(25.0)])

    assert resolution.resolved_price == 23.0
    assert resolution.strategy_used == StrategyName.COMPETITIVE
    assert resolution.analysis.lowest_competitor_price == 25.0


def test_pvpm_when_auto_update_disabled(engine):
    """Testa se sem auto update o preço é o PVPM"""
    profile = ProductPricingProfile(auto_update_enabled=False)

    resolution = engine.resolve(PVPM, profile, offers=[competitor(25.0)])

    assert resolution.resolved_price == PVPM
    assert resolution.strategy_used == StrategyName.PVPM


def test_pvpm_without_competitor_data(engine):
    """Testa se sem ofertas o preço é o PVPM"""
    resolution = engine.resolve(PVPM, ProductPricingProfile(), offers=[])

    assert resolution.strategy_used == StrategyName.PVPM
    assert resolution.analysis is None


def test_fixed_price_below_pvpm_is_kept_and_flagged(engine):
    """Testa se preço fixo abaixo do PVPM é mantido, mas sinalizado"""
    profile = ProductPricingProfile(fixed_price=15.0, fixed_price_reason="queima de estoque")

    resolution = engine.resolve(PVPM, profile)

    assert resolution.resolved_price == 15.0
    assert FLAG_FIXED_PRICE_BELOW_PVPM in resolution.flags


def test_unreachable_buy_box_is_flagged(engine):
    """Testa se concorrente abaixo do PVPM gera flag e mantém o piso"""
    resolution = engine.resolve(PVPM, ProductPricingProfile(), offers=[competitor(18.0)])

    assert resolution.strategy_used == StrategyName.PVPM
    assert resolution.resolved_price == PVPM
    assert FLAG_BUY_BOX_UNREACHABLE in resolution.flags


def test_stale_competitor_data_is_ignored_and_flagged(engine):
    """Testa se dados antigos de concorrência viram flag e não recomendação"""
    offers = [competitor(25.0, observed_at=NOW - timedelta(hours=3))]

    resolution = engine.resolve(PVPM, ProductPricingProfile(), offers=offers)

    assert resolution.strategy_used == StrategyName.PVPM
    assert resolution.flags == [FLAG_STALE_COMPETITOR_DATA]


def test_channel_gap_violation_is_flagged_not_corrected(engine):
    """Testa se marketplace abaixo de loja + 4% é sinalizado sem alterar o preço"""
    resolution = engine.resolve(PVPM, ProductPricingProfile(), storefront_price=20.0)

    assert resolution.resolved_price == PVPM
    assert FLAG_CHANNEL_PRICE_CONFLICT in resolution.flags


def test_buy_box_and_channel_rule_conflict_is_flagged(engine):
    """Testa se disputar o buy box abaixo da regra entre canais gera flag"""
    resolution = engine.resolve(
        PVPM, ProductPricingProfile(), offers=[competitor(25.0)], storefront_price=23.0,
    )

    assert resolution.strategy_used == StrategyName.COMPETITIVE
    assert resolution.resolved_price == 23.0
    assert resolution.flags == [FLAG_CHANNEL_PRICE_CONFLICT]


def test_channel_gap_respected(engine):
    """Testa se sem preço de loja ou com folga suficiente não há flag"""
    assert engine.resolve(PVPM, ProductPricingProfile()).flags == []
    assert engine.resolve(PVPM, ProductPricingProfile(), storefront_price=19.0).flags == []
    assert not engine.violates_channel_gap(20.81, 20.0)
    assert engine.violates_channel_gap(20.79, 20.0)


def test_floor_violation_raises(engine, monkeypatch):
    """Testa se uma recomendação abaixo do PVPM é tratada como defeito"""
    broken = CompetitorAnalysis(has_buy_box=False, lowest_competitor_price=12.0, recommended_price=10.0)
    monkeypatch.setattr(engine.analyzer, "analyze", lambda *args, **kwargs: broken)

    with pytest.raises(PriceFloorViolationError):
        engine.resolve(PVPM, ProductPricingProfile(), offers=[competitor(12.0)])


def test_resolution_uses_injected_clock(clock):
    """Testa se a validade das ofertas é medida pelo relógio injetado"""
    engine = PriceResolutionEngine(PricingConfig(), clock)
    offers = [competitor(25.0, observed_at=clock.now() - timedelta(minutes=30))]

    assert engine.resolve(PVPM, ProductPricingProfile(), offers=offers).strategy_used == StrategyName.COMPETITIVE

    clock.advance(hours=2)
    assert engine.resolve(PVPM, ProductPricingProfile(), offers=offers).strategy_used == StrategyName.PVPM


def test_automation_kill_switch_blocks_competitive_price(clock):
    """Testa se a chave geral desligada impede a estratégia competitiva"""
    config = PricingConfig(automation_settings={"auto_update_enabled": False})
    engine = PriceResolutionEngine(config, clock)

    resolution = engine.resolve(PVPM, ProductPricingProfile(), offers=[competitor(25.0)])

    assert resolution.strategy_used == StrategyName.PVPM
    assert resolution.resolved_price == PVPM
    assert resolution.flags == [FLAG_AUTOMATION_PAUSED]


def test_competitive_price_only_within_operating_hours(clock):
    """Testa se fora do horário de operação a concorrência não define o preço"""
    config = PricingConfig(automation_settings={"operating_hours_start": 8, "operating_hours_end": 18})
    engine = PriceResolutionEngine(config, clock)
    offers = [competitor(25.0)]

    assert engine.resolve(PVPM, ProductPricingProfile(), offers=offers).strategy_used == StrategyName.COMPETITIVE

    clock.moment = NOW.replace(hour=19)
    resolution = engine.resolve(PVPM, ProductPricingProfile(), offers=offers)

    assert resolution.strategy_used == StrategyName.PVPM
    assert FLAG_AUTOMATION_PAUSED in resolution.flags


def test_competitive_price_only_on_operating_days(clock):
    """Testa se em dia fora da operação a concorrência não define o preço"""
    # NOW é uma quarta-feira (3)
    config = PricingConfig(automation_settings={"operating_days": [1, 2, 4, 5]})
    engine = PriceResolutionEngine(config, clock)

    resolution = engine.resolve(PVPM, ProductPricingProfile(), offers=[competitor(25.0)])

    assert resolution.strategy_used == StrategyName.PVPM


def test_paused_automation_keeps_fixed_price(clock):
    """Testa se a automação pausada não afeta o preço fixo"""
    config = PricingConfig(automation_settings={"auto_update_enabled": False})
    engine = PriceResolutionEngine(config, clock)
    profile = ProductPricingProfile(fixed_price=49.99, fixed_price_reason="promo")

    resolution = engine.resolve(PVPM, profile, offers=[competitor(25.0)])

    assert resolution.strategy_used == StrategyName.FIXED
    assert FLAG_AUTOMATION_PAUSED not in resolution.flags


def test_preview_single_strategy(engine):
    """Testa a avaliação isolada de cada estratégia"""
    offers = [competitor(25.0)]

    competitive = engine.preview(CompetitivePriceStrategy(), PVPM, ProductPricingProfile(), offers=offers)
    assert competitive.applies
    assert competitive.price == 23.0

    fixed = engine.preview(FixedPriceStrategy(), PVPM, ProductPricingProfile(), offers=offers)
    assert not fixed.applies
    assert fixed.price is None
    assert not fixed.enforces_floor

    floor = engine.preview(PVPMStrategy(), PVPM, ProductPricingProfile(), storefront_price=20.0)
    assert floor.price == PVPM
    assert floor.flags == [FLAG_CHANNEL_PRICE_CONFLICT]
