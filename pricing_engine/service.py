import logging
import math
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple, Union

from pricing_engine.batch import BulkRecalculationProcessor
from pricing_engine.errors import (
    CompetitorDataSourceError,
    InvalidCostError,
    InvalidFixedPriceError,
    InvalidMarginError,
    MissingShippingTierError,
)
from pricing_engine.factory import PricingStrategyFactory
from pricing_engine.history import PriceHistoryRecorder
from pricing_engine.interface import (
    IClock,
    ICompetitorDataSource,
    IConfigStore,
    IPriceHistoryStore,
    IProductRepository,
    SystemClock,
)
from pricing_engine.models import (
    BatchResult,
    BulkOptions,
    Channel,
    CompetitorOffer,
    HistorySummary,
    PriceApplication,
    PriceBreakdown,
    PriceChangeReason,
    PriceChangeRecord,
    PriceResolution,
    PricingConfig,
    PricingStatus,
    PricingStatusReport,
    ProductFilter,
    ProductPricingProfile,
    ProductValidation,
    PVPMRecalculation,
    PVPMResult,
    StrategyName,
    StrategyPreview,
)
from pricing_engine.pvpm import PVPMCalculator
from pricing_engine.resolution import PriceResolutionEngine
from pricing_engine.rounding import publishable_price

logger = logging.getLogger(__name__)

# Motivo registrado no histórico para cada estratégia vencedora
STRATEGY_REASONS: Dict[StrategyName, PriceChangeReason] = {
    StrategyName.FIXED: PriceChangeReason.MANUAL,
    StrategyName.COMPETITIVE: PriceChangeReason.COMPETITOR_MATCH,
    StrategyName.PVPM: PriceChangeReason.PVPM_CHANGE,
}

PROFILE_FIELDS = set(ProductPricingProfile.model_fields.keys())

# PVPM calculado há mais tempo que isso entra na fila de recálculo
PVPM_MAX_AGE_MINUTES = 60


class PricingService:
    """
    Fachada do motor de precificação.

    Junta repositório de produtos, configuração, fonte de concorrência e
    histórico. Operações de um produto falham rápido; somente o recálculo em
    massa tolera falhas por item.
    """

    def __init__(
            self,
            products: IProductRepository,
            config_store: IConfigStore,
            history_store: IPriceHistoryStore,
            competitor_source: Optional[ICompetitorDataSource] = None,
            clock: Optional[IClock] = None,
    ):
        self.products = products
        self.config_store = config_store
        self.competitor_source = competitor_source
        self.clock = clock or SystemClock()
        self.history = PriceHistoryRecorder(history_store, self.clock)

    # ------------------------------------------------------------------
    # Configuração
    # ------------------------------------------------------------------

    def get_pricing_config(self) -> PricingConfig:
        return self.config_store.get_pricing_config()

    def update_pricing_config(
            self,
            config: Union[PricingConfig, Dict[str, Any]],
            changed_by: str = "system",
    ) -> PricingConfig:
        """Substitui a configuração inteira (validada pelo modelo)"""
        if not isinstance(config, PricingConfig):
            config = PricingConfig.model_validate(config)

        config = config.model_copy(update={"updated_at": self.clock.now(), "updated_by": changed_by})
        saved = self.config_store.update_pricing_config(config)

        logger.info(
            f"Configuração de precificação atualizada por {changed_by}: "
            f"margem={saved.default_margin}, imposto={saved.default_tax_rate}, "
            f"frete padrão={saved.default_shipping_cost}"
        )
        return saved

    # ------------------------------------------------------------------
    # PVPM
    # ------------------------------------------------------------------

    def calculate_pvpm(self, product_id: str, config: Optional[PricingConfig] = None) -> PVPMResult:
        """
        Calcula o PVPM sem persistir nada.

        Raises:
            ProductNotFoundError, InvalidCostError, InvalidMarginError,
            MissingShippingTierError
        """
        config = config or self.get_pricing_config()
        calculator = PVPMCalculator(config)

        try:
            return calculator.calculate(
                self.products.get_cost(product_id),
                self.products.get_weight(product_id),
                self.products.get_pricing_profile(product_id),
            )
        except Exception as e:
            logger.error(f"[{product_id}] Erro ao calcular PVPM: {e}")
            raise

    def get_pvpm_breakdown(self, product_id: str) -> Tuple[PVPMResult, PriceBreakdown]:
        config = self.get_pricing_config()
        result = self.calculate_pvpm(product_id, config)
        return result, PVPMCalculator(config).get_breakdown(result)

    def recalculate_pvpm(
            self,
            product_id: str,
            changed_by: str = "system",
            config: Optional[PricingConfig] = None,
            reason: PriceChangeReason = PriceChangeReason.PVPM_CHANGE,
            batch_id: Optional[str] = None,
    ) -> PVPMRecalculation:
        """Recalcula, persiste o PVPM e registra a mudança no histórico"""
        result = self.calculate_pvpm(product_id, config)
        previous = self.products.get_stored_pvpm(product_id)
        changed = previous != result.pvpm

        # o horário do cálculo é renovado mesmo sem mudança de valor
        self.products.save_pvpm(product_id, result.pvpm, self.clock.now())

        record = None
        if changed:
            # primeiro cálculo não entra no histórico
            if previous is not None and previous > 0:
                record = self.history.record(
                    product_id, previous, result.pvpm, reason, changed_by, note="pvpm", batch_id=batch_id,
                )
            logger.info(f"[{product_id}] PVPM atualizado: {previous} -> {result.pvpm:.2f}")

        return PVPMRecalculation(result=result, previous_pvpm=previous, changed=changed, record=record)

    def validate_product(self, product_id: str) -> ProductValidation:
        calculator = PVPMCalculator(self.get_pricing_config())
        return calculator.validate(
            self.products.get_cost(product_id),
            self.products.get_weight(product_id),
            self.products.get_pricing_profile(product_id),
        )

    def determine_pricing_status(self, product_id: str) -> PricingStatusReport:
        """
        Classifica a situação de precificação do produto.

        missing_cost e missing_data indicam que o PVPM não pode ser calculado;
        manual_review indica preço publicado abaixo do PVPM sem preço fixo;
        channel_conflict indica marketplace sem a folga exigida sobre a loja.
        """
        config = self.get_pricing_config()
        profile = self.products.get_pricing_profile(product_id)
        marketplace_price = self.products.get_price(product_id, Channel.MARKETPLACE)

        def report(status: PricingStatus, message: str, pvpm: Optional[float] = None) -> PricingStatusReport:
            return PricingStatusReport(
                product_id=product_id,
                status=status,
                message=message,
                pvpm=pvpm,
                marketplace_price=marketplace_price,
            )

        try:
            result = PVPMCalculator(config).calculate(
                self.products.get_cost(product_id),
                self.products.get_weight(product_id),
                profile,
            )
        except InvalidCostError as e:
            return report(PricingStatus.MISSING_COST, str(e))
        except (InvalidMarginError, MissingShippingTierError) as e:
            return report(PricingStatus.MISSING_DATA, str(e))

        if marketplace_price is not None and marketplace_price < result.pvpm and not profile.has_fixed_price:
            return report(
                PricingStatus.MANUAL_REVIEW,
                f"Preço publicado {marketplace_price:.2f} abaixo do PVPM {result.pvpm:.2f}",
                result.pvpm,
            )

        storefront_price = self.products.get_price(product_id, Channel.STOREFRONT)
        reference_price = marketplace_price if marketplace_price is not None else result.pvpm
        if PriceResolutionEngine(config, self.clock).violates_channel_gap(reference_price, storefront_price):
            return report(
                PricingStatus.CHANNEL_CONFLICT,
                f"Marketplace ({reference_price:.2f}) deveria custar pelo menos "
                f"{config.channel_price_gap * 100:.0f}% acima da loja ({storefront_price:.2f})",
                result.pvpm,
            )

        return report(PricingStatus.OK, "", result.pvpm)

    def pvpm_update_filter(
            self,
            product_filter: Optional[ProductFilter] = None,
            max_age_minutes: int = PVPM_MAX_AGE_MINUTES,
    ) -> ProductFilter:
        """Filtro de produtos com PVPM ausente, zerado ou mais antigo que max_age_minutes"""
        product_filter = product_filter or ProductFilter()
        cutoff = product_filter.pvpm_calculated_before or self.clock.now() - timedelta(minutes=max_age_minutes)
        return product_filter.model_copy(update={"needs_pvpm_update": True, "pvpm_calculated_before": cutoff})

    def get_products_needing_pvpm_update(self, max_age_minutes: int = PVPM_MAX_AGE_MINUTES) -> List[str]:
        product_ids = self.products.find_product_ids(self.pvpm_update_filter(max_age_minutes=max_age_minutes))
        logger.info(f"{len(product_ids)} produtos precisam de recálculo de PVPM")
        return product_ids

    # ------------------------------------------------------------------
    # Resolução e publicação de preço
    # ------------------------------------------------------------------

    def fetch_offers(self, product_id: str) -> List[CompetitorOffer]:
        """Ofertas da concorrência; falhas da fonte equivalem a "sem dados" """
        if self.competitor_source is None:
            return []
        try:
            return self.competitor_source.fetch_offers(product_id)
        except CompetitorDataSourceError as e:
            logger.warning(f"[{product_id}] Sem dados de concorrência: {e}")
            return []

    def resolve_price(
            self,
            product_id: str,
            config: Optional[PricingConfig] = None,
            pvpm_result: Optional[PVPMResult] = None,
    ) -> PriceResolution:
        config = config or self.get_pricing_config()
        pvpm_result = pvpm_result or self.calculate_pvpm(product_id, config)

        engine = PriceResolutionEngine(config, self.clock)
        resolution = engine.resolve(
            pvpm_result.pvpm,
            self.products.get_pricing_profile(product_id),
            offers=self.fetch_offers(product_id),
            own_price=self.products.get_price(product_id, Channel.MARKETPLACE),
            storefront_price=self.products.get_price(product_id, Channel.STOREFRONT),
        )

        if resolution.flags:
            logger.warning(f"[{product_id}] Resolução com flags: {', '.join(resolution.flags)}")
        return resolution

    def apply_price(
            self,
            product_id: str,
            changed_by: str = "system",
            reason: Optional[PriceChangeReason] = None,
            config: Optional[PricingConfig] = None,
            pvpm_result: Optional[PVPMResult] = None,
            batch_id: Optional[str] = None,
    ) -> PriceApplication:
        """
        Resolve o preço, publica no marketplace e registra no histórico.

        O valor publicado é arredondado para cima no centavo. Se for igual ao
        preço atual nada é publicado nem registrado.
        """
        resolution = self.resolve_price(product_id, config, pvpm_result)
        published = publishable_price(resolution.resolved_price)
        previous = self.products.get_price(product_id, Channel.MARKETPLACE)

        changed = previous != published
        record = None
        if changed:
            self.products.set_price(product_id, Channel.MARKETPLACE, published)
            record = self.history.record(
                product_id,
                previous,
                published,
                reason or STRATEGY_REASONS[resolution.strategy_used],
                changed_by,
                channel=Channel.MARKETPLACE,
                note=resolution.strategy_used.value,
                batch_id=batch_id,
            )
            logger.info(
                f"[{product_id}] Preço publicado: {previous} -> {published:.2f} "
                f"({resolution.strategy_used.value})"
            )

        return PriceApplication(
            resolution=resolution,
            previous_price=previous,
            published_price=published,
            changed=changed,
            record=record,
        )

    def preview_strategy(self, product_id: str, name: str) -> StrategyPreview:
        """
        Avalia uma estratégia pelo nome, sem publicar nem registrar nada.

        Raises:
            ValueError: Estratégia desconhecida
        """
        strategy = PricingStrategyFactory.get(name)
        config = self.get_pricing_config()
        pvpm_result = self.calculate_pvpm(product_id, config)

        return PriceResolutionEngine(config, self.clock).preview(
            strategy,
            pvpm_result.pvpm,
            self.products.get_pricing_profile(product_id),
            offers=self.fetch_offers(product_id),
            own_price=self.products.get_price(product_id, Channel.MARKETPLACE),
            storefront_price=self.products.get_price(product_id, Channel.STOREFRONT),
        )

    # ------------------------------------------------------------------
    # Perfil de precificação
    # ------------------------------------------------------------------

    def set_fixed_price(
            self,
            product_id: str,
            price: Optional[float],
            reason: Optional[str] = None,
            changed_by: str = "system",
    ) -> ProductPricingProfile:
        """
        Define ou remove (price=None) o preço fixo do produto.

        Raises:
            InvalidFixedPriceError: Preço não finito, não positivo ou motivo vazio
        """
        if price is None:
            updates = {"fixed_price": None, "fixed_price_reason": None}
        else:
            if not math.isfinite(price) or price <= 0:
                raise InvalidFixedPriceError(f"Preço fixo deve ser um número maior que zero: {price}")
            if not reason or not reason.strip():
                raise InvalidFixedPriceError("Preço fixo exige um motivo")
            updates = {"fixed_price": float(price), "fixed_price_reason": reason.strip()}

        profile = self.products.get_pricing_profile(product_id)
        updated = ProductPricingProfile.model_validate({**profile.model_dump(), **updates})
        saved = self.products.save_pricing_profile(product_id, updated)

        if price is None:
            logger.info(f"[{product_id}] Preço fixo removido por {changed_by}")
        else:
            logger.info(f"[{product_id}] Preço fixo {price:.2f} definido por {changed_by}: {reason}")
        return saved

    def update_product_pricing_profile(
            self,
            product_id: str,
            partial: Dict[str, Any],
            changed_by: str = "system",
    ) -> ProductPricingProfile:
        """
        Atualiza campos do perfil de precificação.

        Args:
            product_id: Produto alvo
            partial: Campos a alterar; "version" informa a versão lida pelo
                chamador para a verificação otimista
            changed_by: Usuário responsável

        Raises:
            ValueError: Campo desconhecido ou perfil resultante inválido
            ConcurrentUpdateError: Perfil alterado desde a leitura
        """
        unknown = set(partial) - PROFILE_FIELDS
        if unknown:
            raise ValueError(f"Campos de perfil desconhecidos: {', '.join(sorted(unknown))}")

        profile = self.products.get_pricing_profile(product_id)
        data = profile.model_dump()
        data.update(partial)

        # limpar o motivo limpa também o preço fixo
        if "fixed_price_reason" in partial and "fixed_price" not in partial \
                and not (partial["fixed_price_reason"] or "").strip():
            data["fixed_price"] = None

        updated = ProductPricingProfile.model_validate(data)
        saved = self.products.save_pricing_profile(product_id, updated)

        logger.info(f"[{product_id}] Perfil de precificação atualizado por {changed_by}: {sorted(partial)}")
        return saved

    # ------------------------------------------------------------------
    # Massa e histórico
    # ------------------------------------------------------------------

    def run_bulk_recalculation(
            self,
            product_filter: Optional[ProductFilter] = None,
            options: Optional[BulkOptions] = None,
    ) -> BatchResult:
        if product_filter is not None and product_filter.needs_pvpm_update:
            product_filter = self.pvpm_update_filter(product_filter)
        return BulkRecalculationProcessor(self).run(product_filter, options)

    def get_price_history(
            self,
            product_id: Optional[str] = None,
            date_from: Optional[datetime] = None,
            date_to: Optional[datetime] = None,
            reasons: Optional[List[Union[PriceChangeReason, str]]] = None,
            batch_id: Optional[str] = None,
    ) -> List[PriceChangeRecord]:
        return self.history.get_history(product_id, date_from, date_to, reasons, batch_id)

    def get_history_summary(self, product_id: Optional[str] = None, days: int = 30) -> HistorySummary:
        return self.history.summarize(product_id, days)
