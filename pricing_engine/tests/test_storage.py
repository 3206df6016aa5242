from datetime import timedelta

import pytest

from pricing_engine.errors import ConcurrentUpdateError, ProductNotFoundError
from pricing_engine.models import Channel, PricingConfig, ProductFilter, ProductPricingProfile, ShippingTier
from pricing_engine.storage import PricingConfigRow, SqlConfigStore


def test_config_created_with_defaults_on_first_read(session_factory):
    """Testa se a primeira leitura grava a configuração padrão"""
    store = SqlConfigStore(session_factory)

    config = store.get_pricing_config()

    assert config == PricingConfig()
    with session_factory() as db:
        assert db.query(PricingConfigRow).count() == 1
    assert store.get_pricing_config() == config


def test_config_update_replaces_document(session_factory):
    """Testa se a atualização substitui a configuração inteira"""
    store = SqlConfigStore(session_factory)
    new_config = PricingConfig(
        default_margin=0.6,
        default_shipping_cost=None,
        shipping_cost_table=[ShippingTier(max_weight_kg=2, cost=5.0)],
        updated_by="admin",
    )

    store.update_pricing_config(new_config)
    loaded = store.get_pricing_config()

    assert loaded.default_margin == 0.6
    assert loaded.default_shipping_cost is None
    assert loaded.shipping_cost_table == [ShippingTier(max_weight_kg=2, cost=5.0)]
    assert loaded.updated_by == "admin"


def test_product_reads(repository):
    """Testa leitura de custo, peso, preços e perfil"""
    repository.add_product(
        "p1", 10.0, weight_kg=1.5, marketplace_price=30.0, storefront_price=27.0,
        profile=ProductPricingProfile(custom_margin=0.6),
    )

    assert repository.get_cost("p1") == 10.0
    assert repository.get_weight("p1") == 1.5
    assert repository.get_price("p1", Channel.MARKETPLACE) == 30.0
    assert repository.get_price("p1", Channel.STOREFRONT) == 27.0
    assert repository.get_pricing_profile("p1").custom_margin == 0.6
    assert repository.get_stored_pvpm("p1") is None


def test_unknown_product_raises(repository):
    """Testa se produto inexistente gera ProductNotFoundError"""
    with pytest.raises(ProductNotFoundError):
        repository.get_cost("nao-existe")

    with pytest.raises(ProductNotFoundError):
        repository.save_pricing_profile("nao-existe", ProductPricingProfile())


def test_profile_save_bumps_version(repository):
    """Testa se salvar o perfil incrementa a versão"""
    repository.add_product("p1", 10.0)
    profile = repository.get_pricing_profile("p1")

    saved = repository.save_pricing_profile("p1", profile.model_copy(update={"auto_update_enabled": False}))

    assert saved.version == profile.version + 1
    loaded = repository.get_pricing_profile("p1")
    assert loaded.version == saved.version
    assert not loaded.auto_update_enabled


def test_stale_profile_save_raises_conflict(repository):
    """Testa se salvar a partir de uma leitura antiga gera conflito"""
    repository.add_product("p1", 10.0)
    first_reader = repository.get_pricing_profile("p1")
    second_reader = repository.get_pricing_profile("p1")

    repository.save_pricing_profile("p1", first_reader.model_copy(update={"custom_cost": 11.0}))

    with pytest.raises(ConcurrentUpdateError):
        repository.save_pricing_profile("p1", second_reader.model_copy(update={"custom_cost": 12.0}))

    assert repository.get_pricing_profile("p1").custom_cost == 11.0


def test_price_and_pvpm_writes(repository, clock):
    """Testa gravação de preço por canal e do PVPM"""
    repository.add_product("p1", 10.0)

    repository.set_price("p1", Channel.MARKETPLACE, 23.0)
    repository.save_pvpm("p1", 20.3133, clock.now())

    assert repository.get_price("p1", Channel.MARKETPLACE) == 23.0
    assert repository.get_price("p1", Channel.STOREFRONT) is None
    assert repository.get_stored_pvpm("p1") == 20.3133


def test_price_writes_do_not_conflict_with_profile_edits(repository):
    """Testa se publicar preço não invalida a versão do perfil"""
    repository.add_product("p1", 10.0)
    profile = repository.get_pricing_profile("p1")

    repository.set_price("p1", Channel.MARKETPLACE, 23.0)

    saved = repository.save_pricing_profile("p1", profile.model_copy(update={"custom_cost": 11.0}))
    assert saved.custom_cost == 11.0


def test_find_product_ids_filters(repository):
    """Testa filtros de produtos: ids, ativos e auto update"""
    repository.add_product("a", 10.0)
    repository.add_product("b", 10.0, active=False)
    repository.add_product("c", 10.0, profile=ProductPricingProfile(auto_update_enabled=False))

    assert repository.find_product_ids(ProductFilter()) == ["a", "c"]
    assert repository.find_product_ids(ProductFilter(active_only=False)) == ["a", "b", "c"]
    assert repository.find_product_ids(ProductFilter(auto_update_only=True)) == ["a"]
    assert repository.find_product_ids(ProductFilter(product_ids=["b", "c"])) == ["c"]


def test_find_products_needing_pvpm_update(repository, clock):
    """Testa o filtro de PVPM ausente, zerado ou calculado antes do corte"""
    for product_id in ["nunca", "zerado", "antigo", "recente"]:
        repository.add_product(product_id, 10.0)
    repository.save_pvpm("zerado", 0.0, clock.now())
    repository.save_pvpm("antigo", 20.31, clock.now() - timedelta(hours=2))
    repository.save_pvpm("recente", 20.31, clock.now())

    cutoff = clock.now() - timedelta(hours=1)
    product_filter = ProductFilter(needs_pvpm_update=True, pvpm_calculated_before=cutoff)

    assert repository.find_product_ids(product_filter) == ["antigo", "nunca", "zerado"]
    assert repository.find_product_ids(ProductFilter(needs_pvpm_update=True)) == ["nunca", "zerado"]
