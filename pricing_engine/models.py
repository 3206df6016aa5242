from datetime import datetime, timezone
from enum import Enum
from typing import List, Dict, Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Channel(str, Enum):
    """Canais de venda sincronizados com o catálogo"""
    MARKETPLACE = "marketplace"
    STOREFRONT = "storefront"


class PriceChangeReason(str, Enum):
    """Motivos aceitos no histórico de preços"""
    MANUAL = "manual"
    PVPM_CHANGE = "pvpm_change"
    PVPM_RECALCULATION = "pvpm_recalculation"
    COMPETITOR_MATCH = "competitor_match"
    SYSTEM = "system"
    BULK_UPDATE = "bulk_update"


FLAG_STALE_COMPETITOR_DATA = "stale_competitor_data"
FLAG_BUY_BOX_UNREACHABLE = "buy_box_unreachable"
FLAG_CHANNEL_PRICE_CONFLICT = "channel_price_conflict"
FLAG_FIXED_PRICE_BELOW_PVPM = "fixed_price_below_pvpm"
FLAG_AUTOMATION_PAUSED = "automation_paused"


class StrategyName(str, Enum):
    """Estratégias de resolução de preço, em ordem de prioridade"""
    FIXED = "fixed"
    COMPETITIVE = "competitive"
    PVPM = "pvpm"


class PricingStatus(str, Enum):
    """Situação de precificação de um produto"""
    OK = "ok"
    MISSING_COST = "missing_cost"
    MISSING_DATA = "missing_data"
    CHANNEL_CONFLICT = "channel_conflict"
    MANUAL_REVIEW = "manual_review"


# Tabela padrão da transportadora (até 20 kg)
DEFAULT_SHIPPING_TABLE: List[Dict[str, float]] = [
    {"max_weight_kg": 1, "cost": 4.18},
    {"max_weight_kg": 3, "cost": 4.57},
    {"max_weight_kg": 5, "cost": 4.93},
    {"max_weight_kg": 10, "cost": 5.64},
    {"max_weight_kg": 15, "cost": 7.08},
    {"max_weight_kg": 20, "cost": 9.25},
]


class ShippingTier(BaseModel):
    """Faixa da tabela de frete por peso"""
    max_weight_kg: float = Field(..., gt=0, allow_inf_nan=False)
    cost: float = Field(..., ge=0, allow_inf_nan=False)


class CompetitorSettings(BaseModel):
    """Parâmetros de reação à concorrência"""
    price_update_frequency_minutes: int = Field(60, ge=1)
    min_price_difference: float = Field(2.0, ge=0)  # diferença usada para disputar o buy box
    # mantido só por compatibilidade com documentos de configuração existentes;
    # a recomendação usa apenas min_price_difference
    fallback_difference: float = Field(0.01, ge=0)


class AutomationSettings(BaseModel):
    """
    Janela em que preços podem ser alterados automaticamente.

    Dias seguem a convenção 0 = domingo ... 6 = sábado; horas são inclusivas
    nas duas pontas e avaliadas em UTC.
    """
    auto_update_enabled: bool = True  # chave geral da automação
    operating_hours_start: int = Field(6, ge=0, le=23)
    operating_hours_end: int = Field(23, ge=0, le=23)
    operating_days: List[int] = Field(default_factory=lambda: [0, 1, 2, 3, 4, 5, 6])

    @field_validator("operating_days")
    @classmethod
    def _days_in_week(cls, days: List[int]) -> List[int]:
        invalid = [day for day in days if day < 0 or day > 6]
        if invalid:
            raise ValueError(f"Dias devem estar entre 0 (domingo) e 6 (sábado): {invalid}")
        return days

    def is_within_operating_hours(self, now: datetime) -> bool:
        now = now.astimezone(timezone.utc) if now.tzinfo else now
        day = now.isoweekday() % 7
        return (
            day in self.operating_days
            and self.operating_hours_start <= now.hour <= self.operating_hours_end
        )

    def allows_updates(self, now: datetime) -> bool:
        return self.auto_update_enabled and self.is_within_operating_hours(now)


class PricingConfig(BaseModel):
    """
    Configuração global de precificação (documento único).

    Lida por todo cálculo de PVPM; substituída inteira quando o administrador
    edita a configuração.
    """
    default_margin: float = Field(0.75, gt=0, lt=1)
    default_tax_rate: float = Field(0.21, ge=0, allow_inf_nan=False)
    default_shipping_cost: Optional[float] = Field(10.0, ge=0, allow_inf_nan=False)
    shipping_cost_table: List[ShippingTier] = Field(
        default_factory=lambda: [ShippingTier(**tier) for tier in DEFAULT_SHIPPING_TABLE]
    )
    competitor_settings: CompetitorSettings = Field(default_factory=CompetitorSettings)
    automation_settings: AutomationSettings = Field(default_factory=AutomationSettings)
    channel_price_gap: float = Field(0.04, ge=0, allow_inf_nan=False)  # marketplace >= loja * (1 + gap)
    updated_at: Optional[datetime] = None
    updated_by: str = "system"

    @field_validator("shipping_cost_table")
    @classmethod
    def _thresholds_strictly_increasing(cls, tiers: List[ShippingTier]) -> List[ShippingTier]:
        for previous, current in zip(tiers, tiers[1:]):
            if current.max_weight_kg <= previous.max_weight_kg:
                raise ValueError(
                    f"Faixas de frete devem ter peso máximo estritamente crescente "
                    f"({previous.max_weight_kg} kg seguido de {current.max_weight_kg} kg)"
                )
        return tiers


class ProductPricingProfile(BaseModel):
    """
    Dados de precificação de um produto.

    Cada campo custom_* sobrescreve o valor global quando preenchido.
    Preço fixo e motivo andam juntos: limpar um limpa o outro.
    """
    custom_cost: Optional[float] = Field(None, allow_inf_nan=False)
    custom_margin: Optional[float] = Field(None, allow_inf_nan=False)
    custom_shipping_cost: Optional[float] = Field(None, allow_inf_nan=False)
    auto_update_enabled: bool = True
    fixed_price: Optional[float] = Field(None, gt=0, allow_inf_nan=False)
    fixed_price_reason: Optional[str] = None
    version: int = 0

    @model_validator(mode="after")
    def _fixed_price_needs_reason(self) -> "ProductPricingProfile":
        if self.fixed_price is None:
            self.fixed_price_reason = None
            return self
        if not (self.fixed_price_reason or "").strip():
            raise ValueError("Preço fixo exige um motivo")
        return self

    @property
    def has_fixed_price(self) -> bool:
        return self.fixed_price is not None and self.fixed_price > 0


class PVPMSources(BaseModel):
    """Origem de cada componente usado no PVPM"""
    cost: str
    margin: str
    shipping: str


class PVPMResult(BaseModel):
    """
    Resultado do cálculo de PVPM (precisão total, sem arredondamento).

    pvpm = price_with_tax + shipping_cost
    price_with_tax = base_price * (1 + tax_rate)
    base_price = cost / margin
    """
    cost: float
    margin: float
    base_price: float
    tax_rate: float
    price_with_tax: float
    shipping_cost: float
    pvpm: float
    sources: Optional[PVPMSources] = None


class PriceBreakdown(BaseModel):
    """Breakdown detalhado do cálculo de preço"""
    steps: List[Dict[str, Any]]
    notes: Optional[List[str]] = None


class CompetitorOffer(BaseModel):
    """Oferta de um vendedor no marketplace"""
    seller_id: str
    seller_name: str = ""
    price: float
    is_fba: bool = False
    has_buy_box: bool = False
    is_own_offer: bool = False
    observed_at: Optional[datetime] = None


class CompetitorAnalysis(BaseModel):
    """Leitura das ofertas concorrentes para um produto"""
    has_buy_box: bool
    lowest_competitor_price: Optional[float] = None
    recommended_price: Optional[float] = None
    buy_box_reachable: bool = True
    competitor_count: int = 0
    own_price_gap: Optional[float] = None  # preço próprio - menor concorrente


class PriceResolution(BaseModel):
    """Preço final decidido para o marketplace"""
    resolved_price: float
    strategy_used: StrategyName
    flags: List[str] = Field(default_factory=list)
    pvpm: float
    analysis: Optional[CompetitorAnalysis] = None


class StrategyPreview(BaseModel):
    """Resultado de uma única estratégia para o produto, sem publicar"""
    strategy: StrategyName
    applies: bool
    price: Optional[float] = None
    enforces_floor: bool = True
    flags: List[str] = Field(default_factory=list)
    pvpm: float


class PriceChangeRecord(BaseModel):
    """Entrada imutável do histórico de preços"""
    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    product_id: str
    previous_price: Optional[float] = None
    new_price: float
    reason: PriceChangeReason
    changed_by: str = "system"
    changed_at: datetime
    channel: Channel = Channel.MARKETPLACE
    note: Optional[str] = None
    batch_id: Optional[str] = None  # agrupa as entradas de um recálculo em massa


class HistorySummary(BaseModel):
    """Resumo das mudanças de preço de um período"""
    total_changes: int = 0
    increases: int = 0
    decreases: int = 0
    changes_by_reason: Dict[str, int] = Field(default_factory=dict)
    total_price_impact: float = 0.0
    average_change_amount: float = 0.0


class ProductFilter(BaseModel):
    """Seleção de produtos para recálculo em massa"""
    product_ids: Optional[List[str]] = None
    active_only: bool = True
    auto_update_only: bool = False
    needs_pvpm_update: bool = False  # PVPM ausente, zerado ou calculado antes de pvpm_calculated_before
    pvpm_calculated_before: Optional[datetime] = None


class BulkOptions(BaseModel):
    update_prices: bool = False
    max_workers: int = Field(1, ge=1)
    changed_by: str = "system"
    force_update: bool = False  # publica mesmo com a automação pausada


class BatchError(BaseModel):
    product_id: str
    message: str
    error_type: Optional[str] = None


class BatchResult(BaseModel):
    """Contadores agregados de uma execução em massa"""
    successful: int = 0
    failed: int = 0
    price_updates_queued: int = 0
    errors: List[BatchError] = Field(default_factory=list)
    processed: int = 0
    pvpm_changes: int = 0
    min_pvpm: float = 0.0
    max_pvpm: float = 0.0
    average_pvpm: float = 0.0
    batch_id: Optional[str] = None
    price_updates_paused: bool = False


class ValidationIssue(BaseModel):
    field: str
    message: str
    suggestion: Optional[str] = None
    blocking: bool = True


class ProductValidation(BaseModel):
    is_valid: bool
    issues: List[ValidationIssue] = Field(default_factory=list)


class PVPMRecalculation(BaseModel):
    """PVPM recalculado e persistido"""
    result: PVPMResult
    previous_pvpm: Optional[float] = None
    changed: bool
    record: Optional[PriceChangeRecord] = None


class PriceApplication(BaseModel):
    """Preço resolvido e publicado no marketplace"""
    resolution: PriceResolution
    previous_price: Optional[float] = None
    published_price: float
    changed: bool
    record: Optional[PriceChangeRecord] = None


class PricingStatusReport(BaseModel):
    """Situação de precificação do produto com o motivo"""
    product_id: str
    status: PricingStatus
    message: str = ""
    pvpm: Optional[float] = None
    marketplace_price: Optional[float] = None
