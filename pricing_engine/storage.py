import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, Integer, String, or_
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, sessionmaker

from pricing_engine.errors import ConcurrentUpdateError, ProductNotFoundError
from pricing_engine.interface import IConfigStore, IPriceHistoryStore, IProductRepository, as_utc
from pricing_engine.models import (
    Channel,
    PriceChangeReason,
    PriceChangeRecord,
    PricingConfig,
    ProductFilter,
    ProductPricingProfile,
)

logger = logging.getLogger(__name__)

Base = declarative_base()

# JSONB no PostgreSQL, JSON genérico nos demais (SQLite nos testes)
JSONDocument = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProductRow(Base):
    __tablename__ = "pricing_products"

    id = Column(String, primary_key=True, index=True)
    sku = Column(String, index=True, nullable=True)
    name = Column(String, nullable=True)
    erp_cost = Column(Float, nullable=True)
    weight_kg = Column(Float, nullable=True)
    marketplace_price = Column(Float, nullable=True)
    storefront_price = Column(Float, nullable=True)
    pvpm = Column(Float, nullable=True)
    pvpm_calculated_at = Column(DateTime(timezone=True), nullable=True)
    pricing_profile = Column(JSONDocument, nullable=False, default=dict)
    profile_version = Column(Integer, nullable=False, default=0)
    active = Column(Boolean, nullable=False, default=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class PricingConfigRow(Base):
    __tablename__ = "pricing_config"

    id = Column(Integer, primary_key=True)  # linha única, id = 1
    data = Column(JSONDocument, nullable=False, default=dict)
    updated_by = Column(String, nullable=False, default="system")
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class PriceHistoryRow(Base):
    __tablename__ = "price_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(String, index=True, nullable=False)
    previous_price = Column(Float, nullable=True)
    new_price = Column(Float, nullable=False)
    reason = Column(String, index=True, nullable=False)
    changed_by = Column(String, nullable=False, default="system")
    changed_at = Column(DateTime(timezone=True), index=True, nullable=False)
    channel = Column(String, nullable=False, default=Channel.MARKETPLACE.value)
    note = Column(String, nullable=True)
    batch_id = Column(String, index=True, nullable=True)


def init_db(engine) -> None:
    Base.metadata.create_all(bind=engine)


class SqlProductRepository(IProductRepository):
    """Produtos e preços publicados numa tabela SQLAlchemy"""

    PRICE_COLUMNS = {
        Channel.MARKETPLACE: "marketplace_price",
        Channel.STOREFRONT: "storefront_price",
    }

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def _get_row(self, db, product_id: str) -> ProductRow:
        row = db.query(ProductRow).filter(ProductRow.id == product_id).first()
        if row is None:
            raise ProductNotFoundError(f"Produto '{product_id}' não encontrado")
        return row

    def add_product(
            self,
            product_id: str,
            erp_cost: Optional[float],
            weight_kg: Optional[float] = None,
            sku: Optional[str] = None,
            name: Optional[str] = None,
            profile: Optional[ProductPricingProfile] = None,
            marketplace_price: Optional[float] = None,
            storefront_price: Optional[float] = None,
            active: bool = True,
    ) -> None:
        profile = profile or ProductPricingProfile()
        with self.session_factory() as db:
            db.add(ProductRow(
                id=product_id,
                sku=sku,
                name=name,
                erp_cost=erp_cost,
                weight_kg=weight_kg,
                marketplace_price=marketplace_price,
                storefront_price=storefront_price,
                pricing_profile=profile.model_dump(exclude={"version"}),
                profile_version=profile.version,
                active=active,
            ))
            db.commit()

    def get_cost(self, product_id: str) -> Optional[float]:
        with self.session_factory() as db:
            return self._get_row(db, product_id).erp_cost

    def get_weight(self, product_id: str) -> Optional[float]:
        with self.session_factory() as db:
            return self._get_row(db, product_id).weight_kg

    def get_pricing_profile(self, product_id: str) -> ProductPricingProfile:
        with self.session_factory() as db:
            row = self._get_row(db, product_id)
            data: Dict[str, Any] = dict(row.pricing_profile or {})
            data["version"] = row.profile_version
            return ProductPricingProfile.model_validate(data)

    def save_pricing_profile(self, product_id: str, profile: ProductPricingProfile) -> ProductPricingProfile:
        new_version = profile.version + 1
        with self.session_factory() as db:
            updated = (
                db.query(ProductRow)
                .filter(ProductRow.id == product_id, ProductRow.profile_version == profile.version)
                .update(
                    {
                        ProductRow.pricing_profile: profile.model_dump(exclude={"version"}),
                        ProductRow.profile_version: new_version,
                        ProductRow.updated_at: utcnow(),
                    },
                    synchronize_session=False,
                )
            )
            if not updated:
                db.rollback()
                self._get_row(db, product_id)
                raise ConcurrentUpdateError(
                    f"Perfil de '{product_id}' foi alterado por outra operação (versão lida: {profile.version})"
                )
            db.commit()

        return profile.model_copy(update={"version": new_version})

    def get_price(self, product_id: str, channel: Channel) -> Optional[float]:
        with self.session_factory() as db:
            return getattr(self._get_row(db, product_id), self.PRICE_COLUMNS[Channel(channel)])

    def set_price(self, product_id: str, channel: Channel, price: float) -> None:
        with self.session_factory() as db:
            row = self._get_row(db, product_id)
            setattr(row, self.PRICE_COLUMNS[Channel(channel)], price)
            db.commit()

    def get_stored_pvpm(self, product_id: str) -> Optional[float]:
        with self.session_factory() as db:
            return self._get_row(db, product_id).pvpm

    def save_pvpm(self, product_id: str, pvpm: float, calculated_at: datetime) -> None:
        with self.session_factory() as db:
            row = self._get_row(db, product_id)
            row.pvpm = pvpm
            row.pvpm_calculated_at = as_utc(calculated_at)
            db.commit()

    def find_product_ids(self, product_filter: ProductFilter) -> List[str]:
        with self.session_factory() as db:
            query = db.query(ProductRow)
            if product_filter.product_ids is not None:
                query = query.filter(ProductRow.id.in_(product_filter.product_ids))
            if product_filter.active_only:
                query = query.filter(ProductRow.active.is_(True))
            if product_filter.needs_pvpm_update:
                stale = [ProductRow.pvpm.is_(None), ProductRow.pvpm <= 0, ProductRow.pvpm_calculated_at.is_(None)]
                if product_filter.pvpm_calculated_before is not None:
                    stale.append(ProductRow.pvpm_calculated_at < as_utc(product_filter.pvpm_calculated_before))
                query = query.filter(or_(*stale))

            rows = query.order_by(ProductRow.id).all()
            if product_filter.auto_update_only:
                rows = [row for row in rows if (row.pricing_profile or {}).get("auto_update_enabled", True)]
            return [row.id for row in rows]


class SqlConfigStore(IConfigStore):

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def get_pricing_config(self) -> PricingConfig:
        with self.session_factory() as db:
            row = db.query(PricingConfigRow).filter(PricingConfigRow.id == 1).first()
            if row is None:
                config = PricingConfig()
                db.add(PricingConfigRow(id=1, data=config.model_dump(mode="json"), updated_by=config.updated_by))
                db.commit()
                logger.info("Configuração de precificação criada com valores padrão")
                return config
            return PricingConfig.model_validate(row.data)

    def update_pricing_config(self, config: PricingConfig) -> PricingConfig:
        with self.session_factory() as db:
            row = db.query(PricingConfigRow).filter(PricingConfigRow.id == 1).first()
            if row is None:
                row = PricingConfigRow(id=1)
                db.add(row)
            row.data = config.model_dump(mode="json")
            row.updated_by = config.updated_by
            db.commit()
        return config


class SqlPriceHistoryStore(IPriceHistoryStore):
    """Histórico append-only: só há INSERT e SELECT"""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    @staticmethod
    def _to_record(row: PriceHistoryRow) -> PriceChangeRecord:
        return PriceChangeRecord(
            id=row.id,
            product_id=row.product_id,
            previous_price=row.previous_price,
            new_price=row.new_price,
            reason=PriceChangeReason(row.reason),
            changed_by=row.changed_by,
            changed_at=as_utc(row.changed_at),
            channel=Channel(row.channel),
            note=row.note,
            batch_id=row.batch_id,
        )

    def append(self, record: PriceChangeRecord) -> PriceChangeRecord:
        with self.session_factory() as db:
            row = PriceHistoryRow(
                product_id=record.product_id,
                previous_price=record.previous_price,
                new_price=record.new_price,
                reason=record.reason.value,
                changed_by=record.changed_by,
                changed_at=as_utc(record.changed_at),
                channel=record.channel.value,
                note=record.note,
                batch_id=record.batch_id,
            )
            db.add(row)
            db.commit()
            db.refresh(row)
            return self._to_record(row)

    def query(
            self,
            product_id: Optional[str] = None,
            date_from: Optional[datetime] = None,
            date_to: Optional[datetime] = None,
            reasons: Optional[List[PriceChangeReason]] = None,
            batch_id: Optional[str] = None,
    ) -> List[PriceChangeRecord]:
        with self.session_factory() as db:
            query = db.query(PriceHistoryRow)
            if product_id:
                query = query.filter(PriceHistoryRow.product_id == product_id)
            if date_from:
                query = query.filter(PriceHistoryRow.changed_at >= as_utc(date_from))
            if date_to:
                query = query.filter(PriceHistoryRow.changed_at <= as_utc(date_to))
            if reasons:
                query = query.filter(PriceHistoryRow.reason.in_([PriceChangeReason(r).value for r in reasons]))
            if batch_id:
                query = query.filter(PriceHistoryRow.batch_id == batch_id)

            rows = query.order_by(PriceHistoryRow.changed_at.desc(), PriceHistoryRow.id.desc()).all()
            return [self._to_record(row) for row in rows]
