from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import List, Optional

from pricing_engine.models import (
    Channel,
    CompetitorOffer,
    PriceChangeReason,
    PriceChangeRecord,
    PricingConfig,
    ProductFilter,
    ProductPricingProfile,
)


def as_utc(moment: Optional[datetime]) -> Optional[datetime]:
    """Normaliza datetimes para UTC (datetimes sem fuso são tratados como UTC)"""
    if moment is None:
        return None
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


class IClock(ABC):
    """Fonte de tempo usada nos carimbos do histórico"""

    @abstractmethod
    def now(self) -> datetime:
        pass


class SystemClock(IClock):

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class IProductRepository(ABC):
    """
    Acesso aos dados de catálogo necessários ao motor de precificação.

    O motor nunca acessa o armazenamento diretamente: leituras de custo, peso e
    perfil de precificação e a publicação de preços passam por esta interface.
    """

    @abstractmethod
    def get_cost(self, product_id: str) -> Optional[float]:
        """
        Custo de ERP do produto.

        Raises:
            ProductNotFoundError: Se o produto não existir
        """
        pass

    @abstractmethod
    def get_weight(self, product_id: str) -> Optional[float]:
        """Peso do produto em kg (None quando desconhecido)"""
        pass

    @abstractmethod
    def get_pricing_profile(self, product_id: str) -> ProductPricingProfile:
        pass

    @abstractmethod
    def save_pricing_profile(self, product_id: str, profile: ProductPricingProfile) -> ProductPricingProfile:
        """
        Persiste o perfil com verificação otimista de versão.

        Args:
            product_id: Produto alvo
            profile: Perfil completo; profile.version deve ser a versão lida

        Returns:
            Perfil persistido com a nova versão

        Raises:
            ConcurrentUpdateError: Se a versão armazenada for diferente
        """
        pass

    @abstractmethod
    def get_price(self, product_id: str, channel: Channel) -> Optional[float]:
        """Preço publicado atualmente no canal (None se nunca publicado)"""
        pass

    @abstractmethod
    def set_price(self, product_id: str, channel: Channel, price: float) -> None:
        pass

    @abstractmethod
    def get_stored_pvpm(self, product_id: str) -> Optional[float]:
        pass

    @abstractmethod
    def save_pvpm(self, product_id: str, pvpm: float, calculated_at: datetime) -> None:
        pass

    @abstractmethod
    def find_product_ids(self, product_filter: ProductFilter) -> List[str]:
        """
        IDs que atendem ao filtro, em ordem.

        Com needs_pvpm_update, só entram produtos sem PVPM, com PVPM <= 0 ou
        calculado antes de product_filter.pvpm_calculated_before.
        """
        pass


class IConfigStore(ABC):
    """Documento único de configuração de precificação"""

    @abstractmethod
    def get_pricing_config(self) -> PricingConfig:
        """Retorna a configuração, criando-a com valores padrão na primeira leitura"""
        pass

    @abstractmethod
    def update_pricing_config(self, config: PricingConfig) -> PricingConfig:
        pass


class ICompetitorDataSource(ABC):

    @abstractmethod
    def fetch_offers(self, product_id: str) -> List[CompetitorOffer]:
        """
        Ofertas atuais do produto no marketplace.

        Pode devolver lista vazia ou dados antigos; ausência significa
        "sem informação de concorrência".
        """
        pass


class IPriceHistoryStore(ABC):
    """Coleção append-only de mudanças de preço"""

    @abstractmethod
    def append(self, record: PriceChangeRecord) -> PriceChangeRecord:
        """Grava a entrada e a devolve com o identificador atribuído"""
        pass

    @abstractmethod
    def query(
            self,
            product_id: Optional[str] = None,
            date_from: Optional[datetime] = None,
            date_to: Optional[datetime] = None,
            reasons: Optional[List[PriceChangeReason]] = None,
            batch_id: Optional[str] = None,
    ) -> List[PriceChangeRecord]:
        """Entradas filtradas, mais recentes primeiro"""
        pass
