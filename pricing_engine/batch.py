import logging
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Iterable, List, NamedTuple, Optional

from pricing_engine.models import (
    BatchError,
    BatchResult,
    BulkOptions,
    PriceChangeReason,
    PricingConfig,
    ProductFilter,
)

if TYPE_CHECKING:
    from pricing_engine.service import PricingService

logger = logging.getLogger(__name__)


class ItemOutcome(NamedTuple):
    product_id: str
    pvpm: Optional[float] = None
    pvpm_changed: bool = False
    price_updated: bool = False
    error: Optional[BatchError] = None


class BulkRecalculationProcessor:
    """
    Recalcula o PVPM (e opcionalmente o preço) de muitos produtos.

    Falhas de um produto são isoladas: entram em BatchResult.errors e o lote
    segue. A configuração é lida uma vez por execução, então todos os itens
    usam o mesmo snapshot. Cada execução recebe um batch_id gravado nas
    entradas de histórico que ela gera.

    Com a automação desligada ou fora do horário de operação os preços não
    são publicados (a menos que options.force_update), apenas o PVPM.
    """

    PROGRESS_LOG_INTERVAL = 50

    def __init__(self, service: "PricingService"):
        self.service = service

    def run(
            self,
            product_filter: Optional[ProductFilter] = None,
            options: Optional[BulkOptions] = None,
    ) -> BatchResult:
        product_filter = product_filter or ProductFilter()
        options = options or BulkOptions()

        config = self.service.get_pricing_config()
        product_ids = self.service.products.find_product_ids(product_filter)
        total = len(product_ids)
        batch_id = self.service.history.generate_batch_id("pricing_batch")

        update_prices = options.update_prices
        paused = update_prices and not options.force_update \
            and not config.automation_settings.allows_updates(self.service.clock.now())
        if paused:
            update_prices = False
            logger.warning(
                f"[{batch_id}] Automação desabilitada ou fora do horário de operação; "
                f"somente o PVPM será recalculado"
            )

        logger.info(
            f"[{batch_id}] Recálculo em massa iniciado: {total} produtos "
            f"(update_prices={update_prices}, workers={options.max_workers})"
        )

        def worker(product_id: str) -> ItemOutcome:
            return self.process_product(product_id, config, options, batch_id, update_prices)

        if options.max_workers > 1 and total > 1:
            with ThreadPoolExecutor(max_workers=options.max_workers) as executor:
                outcomes = self._collect(executor.map(worker, product_ids), total)
        else:
            outcomes = self._collect(map(worker, product_ids), total)

        result = self.aggregate(outcomes)
        result.batch_id = batch_id
        result.price_updates_paused = paused
        logger.info(
            f"[{batch_id}] Recálculo em massa concluído: {result.successful} ok, {result.failed} falhas, "
            f"{result.pvpm_changes} PVPMs alterados, {result.price_updates_queued} preços atualizados"
        )
        return result

    def process_product(
            self,
            product_id: str,
            config: PricingConfig,
            options: BulkOptions,
            batch_id: Optional[str] = None,
            update_prices: bool = False,
    ) -> ItemOutcome:
        try:
            recalculation = self.service.recalculate_pvpm(
                product_id,
                changed_by=options.changed_by,
                config=config,
                reason=PriceChangeReason.PVPM_RECALCULATION,
                batch_id=batch_id,
            )

            price_updated = False
            if update_prices:
                application = self.service.apply_price(
                    product_id,
                    changed_by=options.changed_by,
                    reason=PriceChangeReason.BULK_UPDATE,
                    config=config,
                    pvpm_result=recalculation.result,
                    batch_id=batch_id,
                )
                price_updated = application.changed

            return ItemOutcome(
                product_id=product_id,
                pvpm=recalculation.result.pvpm,
                pvpm_changed=recalculation.changed,
                price_updated=price_updated,
            )
        except Exception as e:
            logger.error(f"[{product_id}] Falha no recálculo: {e}")
            return ItemOutcome(
                product_id=product_id,
                error=BatchError(product_id=product_id, message=str(e), error_type=type(e).__name__),
            )

    def _collect(self, outcomes: Iterable[ItemOutcome], total: int) -> List[ItemOutcome]:
        collected = []
        for outcome in outcomes:
            collected.append(outcome)
            if len(collected) % self.PROGRESS_LOG_INTERVAL == 0:
                logger.info(f"Progresso: {len(collected)}/{total} produtos")
        return collected

    @staticmethod
    def aggregate(outcomes: List[ItemOutcome]) -> BatchResult:
        result = BatchResult(processed=len(outcomes))
        pvpms = []

        for outcome in outcomes:
            if outcome.error is not None:
                result.failed += 1
                result.errors.append(outcome.error)
                continue

            result.successful += 1
            pvpms.append(outcome.pvpm)
            if outcome.pvpm_changed:
                result.pvpm_changes += 1
            if outcome.price_updated:
                result.price_updates_queued += 1

        if pvpms:
            result.min_pvpm = min(pvpms)
            result.max_pvpm = max(pvpms)
            result.average_pvpm = sum(pvpms) / len(pvpms)
        return result
