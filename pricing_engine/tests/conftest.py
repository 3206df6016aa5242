import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from pricing_engine.errors import ConcurrentUpdateError, ProductNotFoundError
from pricing_engine.interface import (
    IClock,
    ICompetitorDataSource,
    IConfigStore,
    IPriceHistoryStore,
    IProductRepository,
    as_utc,
)
from pricing_engine.models import (
    Channel,
    CompetitorOffer,
    PriceChangeReason,
    PriceChangeRecord,
    PricingConfig,
    ProductFilter,
    ProductPricingProfile,
)
from pricing_engine.service import PricingService
from pricing_engine.storage import SqlConfigStore, SqlPriceHistoryStore, SqlProductRepository, init_db

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FixedClock(IClock):

    def __init__(self, moment: datetime = NOW):
        self.moment = moment

    def now(self) -> datetime:
        return self.moment

    def advance(self, **kwargs) -> None:
        self.moment = self.moment + timedelta(**kwargs)


class StubCompetitorSource(ICompetitorDataSource):
    """Ofertas em memória por produto; error simula falha da fonte"""

    def __init__(self):
        self.offers: Dict[str, List[CompetitorOffer]] = {}
        self.error: Optional[Exception] = None

    def fetch_offers(self, product_id: str) -> List[CompetitorOffer]:
        if self.error is not None:
            raise self.error
        return list(self.offers.get(product_id, []))


class InMemoryProductRepository(IProductRepository):
    """Repositório thread-safe para os testes de lote paralelo"""

    def __init__(self):
        self._lock = threading.Lock()
        self.products: Dict[str, Dict[str, Any]] = {}

    def add_product(
            self,
            product_id: str,
            erp_cost: Optional[float],
            weight_kg: Optional[float] = None,
            profile: Optional[ProductPricingProfile] = None,
            marketplace_price: Optional[float] = None,
            storefront_price: Optional[float] = None,
            active: bool = True,
            **kwargs,
    ) -> None:
        self.products[product_id] = {
            "erp_cost": erp_cost,
            "weight_kg": weight_kg,
            "profile": profile or ProductPricingProfile(),
            Channel.MARKETPLACE: marketplace_price,
            Channel.STOREFRONT: storefront_price,
            "pvpm": None,
            "pvpm_calculated_at": None,
            "active": active,
        }

    def _get(self, product_id: str) -> Dict[str, Any]:
        try:
            return self.products[product_id]
        except KeyError:
            raise ProductNotFoundError(f"Produto '{product_id}' não encontrado")

    def get_cost(self, product_id: str) -> Optional[float]:
        return self._get(product_id)["erp_cost"]

    def get_weight(self, product_id: str) -> Optional[float]:
        return self._get(product_id)["weight_kg"]

    def get_pricing_profile(self, product_id: str) -> ProductPricingProfile:
        return self._get(product_id)["profile"]

    def save_pricing_profile(self, product_id: str, profile: ProductPricingProfile) -> ProductPricingProfile:
        with self._lock:
            product = self._get(product_id)
            if product["profile"].version != profile.version:
                raise ConcurrentUpdateError(f"Perfil de '{product_id}' alterado")
            saved = profile.model_copy(update={"version": profile.version + 1})
            product["profile"] = saved
            return saved

    def get_price(self, product_id: str, channel: Channel) -> Optional[float]:
        return self._get(product_id)[Channel(channel)]

    def set_price(self, product_id: str, channel: Channel, price: float) -> None:
        with self._lock:
            self._get(product_id)[Channel(channel)] = price

    def get_stored_pvpm(self, product_id: str) -> Optional[float]:
        return self._get(product_id)["pvpm"]

    def save_pvpm(self, product_id: str, pvpm: float, calculated_at: datetime) -> None:
        with self._lock:
            product = self._get(product_id)
            product["pvpm"] = pvpm
            product["pvpm_calculated_at"] = as_utc(calculated_at)

    @staticmethod
    def _needs_pvpm_update(product: Dict[str, Any], product_filter: ProductFilter) -> bool:
        if product["pvpm"] is None or product["pvpm"] <= 0 or product["pvpm_calculated_at"] is None:
            return True
        cutoff = product_filter.pvpm_calculated_before
        return cutoff is not None and product["pvpm_calculated_at"] < as_utc(cutoff)

    def find_product_ids(self, product_filter: ProductFilter) -> List[str]:
        ids = []
        for product_id, product in sorted(self.products.items()):
            if product_filter.product_ids is not None and product_id not in product_filter.product_ids:
                continue
            if product_filter.active_only and not product["active"]:
                continue
            if product_filter.auto_update_only and not product["profile"].auto_update_enabled:
                continue
            if product_filter.needs_pvpm_update and not self._needs_pvpm_update(product, product_filter):
                continue
            ids.append(product_id)
        return ids


class InMemoryConfigStore(IConfigStore):

    def __init__(self, config: Optional[PricingConfig] = None):
        self.config = config
        self.reads = 0

    def get_pricing_config(self) -> PricingConfig:
        self.reads += 1
        if self.config is None:
            self.config = PricingConfig()
        return self.config

    def update_pricing_config(self, config: PricingConfig) -> PricingConfig:
        self.config = config
        return config


class InMemoryHistoryStore(IPriceHistoryStore):

    def __init__(self):
        self._lock = threading.Lock()
        self.records: List[PriceChangeRecord] = []

    def append(self, record: PriceChangeRecord) -> PriceChangeRecord:
        with self._lock:
            stored = record.model_copy(update={"id": len(self.records) + 1})
            self.records.append(stored)
            return stored

    def query(
            self,
            product_id: Optional[str] = None,
            date_from: Optional[datetime] = None,
            date_to: Optional[datetime] = None,
            reasons: Optional[List[PriceChangeReason]] = None,
            batch_id: Optional[str] = None,
    ) -> List[PriceChangeRecord]:
        found = [
            record for record in self.records
            if (not product_id or record.product_id == product_id)
            and (not date_from or as_utc(record.changed_at) >= as_utc(date_from))
            and (not date_to or as_utc(record.changed_at) <= as_utc(date_to))
            and (not reasons or record.reason in reasons)
            and (not batch_id or record.batch_id == batch_id)
        ]
        return sorted(found, key=lambda record: (record.changed_at, record.id), reverse=True)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def competitor_source():
    return StubCompetitorSource()


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    init_db(engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False)
    engine.dispose()


@pytest.fixture
def repository(session_factory):
    return SqlProductRepository(session_factory)


@pytest.fixture
def service(session_factory, repository, competitor_source, clock):
    return PricingService(
        products=repository,
        config_store=SqlConfigStore(session_factory),
        history_store=SqlPriceHistoryStore(session_factory),
        competitor_source=competitor_source,
        clock=clock,
    )


@pytest.fixture
def memory_service(competitor_source, clock):
    return PricingService(
        products=InMemoryProductRepository(),
        config_store=InMemoryConfigStore(),
        history_store=InMemoryHistoryStore(),
        competitor_source=competitor_source,
        clock=clock,
    )
