import logging
import uuid
from datetime import datetime, timedelta
from typing import List, Optional, Union

from pricing_engine.interface import IClock, IPriceHistoryStore, SystemClock
from pricing_engine.models import Channel, HistorySummary, PriceChangeReason, PriceChangeRecord

logger = logging.getLogger(__name__)


class PriceHistoryRecorder:
    """
    Registro append-only das mudanças de preço.

    Nunca altera nem remove entradas. Recalcular um preço idêntico não gera
    registro.
    """

    def __init__(self, store: IPriceHistoryStore, clock: Optional[IClock] = None):
        self.store = store
        self.clock = clock or SystemClock()

    def record(
            self,
            product_id: str,
            previous_price: Optional[float],
            new_price: float,
            reason: Union[PriceChangeReason, str],
            changed_by: str = "system",
            channel: Channel = Channel.MARKETPLACE,
            note: Optional[str] = None,
            batch_id: Optional[str] = None,
    ) -> Optional[PriceChangeRecord]:
        """
        Grava uma mudança de preço.

        Args:
            product_id: Produto alterado
            previous_price: Preço anterior (None se nunca publicado)
            new_price: Novo preço
            reason: Motivo (PriceChangeReason ou seu valor)
            changed_by: ID do usuário ou "system"
            batch_id: Execução em massa que originou a mudança, se houver

        Returns:
            O registro gravado, ou None se o preço não mudou

        Raises:
            ValueError: Se o motivo não for reconhecido
        """
        reason = PriceChangeReason(reason)

        if previous_price == new_price:
            logger.debug(f"[{product_id}] Preço inalterado ({new_price}), nada a registrar")
            return None

        record = PriceChangeRecord(
            product_id=product_id,
            previous_price=previous_price,
            new_price=new_price,
            reason=reason,
            changed_by=changed_by or "system",
            changed_at=self.clock.now(),
            channel=channel,
            note=note,
            batch_id=batch_id,
        )
        stored = self.store.append(record)

        logger.info(
            f"[{product_id}] Mudança de preço registrada: {previous_price} -> {new_price} "
            f"({reason.value}, por {stored.changed_by})"
        )
        return stored

    def generate_batch_id(self, prefix: str = "batch") -> str:
        """Identificador de execução: prefixo, trecho de uuid e instante em ms"""
        timestamp = int(self.clock.now().timestamp() * 1000)
        return f"{prefix}_{uuid.uuid4().hex[:8]}_{timestamp}"

    def get_history(
            self,
            product_id: Optional[str] = None,
            date_from: Optional[datetime] = None,
            date_to: Optional[datetime] = None,
            reasons: Optional[List[Union[PriceChangeReason, str]]] = None,
            batch_id: Optional[str] = None,
    ) -> List[PriceChangeRecord]:
        parsed_reasons = [PriceChangeReason(reason) for reason in reasons] if reasons else None
        return self.store.query(
            product_id=product_id,
            date_from=date_from,
            date_to=date_to,
            reasons=parsed_reasons,
            batch_id=batch_id,
        )

    def summarize(self, product_id: Optional[str] = None, days: int = 30) -> HistorySummary:
        """Resumo de aumentos, reduções e impacto no período"""
        date_from = self.clock.now() - timedelta(days=days)
        records = self.get_history(product_id=product_id, date_from=date_from)

        summary = HistorySummary(total_changes=len(records))
        total_impact = 0.0

        for record in records:
            change = record.new_price - (record.previous_price or 0.0)
            if change > 0:
                summary.increases += 1
            elif change < 0:
                summary.decreases += 1

            key = record.reason.value
            summary.changes_by_reason[key] = summary.changes_by_reason.get(key, 0) + 1
            total_impact += change

        summary.total_price_impact = total_impact
        summary.average_change_amount = total_impact / len(records) if records else 0.0
        return summary
