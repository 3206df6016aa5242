# -*- coding: utf-8 -*-
import logging
from datetime import datetime
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from config import settings
from pricing_engine import (
    ConcurrentUpdateError,
    InvalidCostError,
    InvalidFixedPriceError,
    InvalidMarginError,
    MissingShippingTierError,
    PricingService,
    PricingStrategyFactory,
    ProductNotFoundError,
)
from pricing_engine.competitor_source import HttpCompetitorDataSource
from pricing_engine.models import (
    BatchResult,
    BulkOptions,
    HistorySummary,
    PriceApplication,
    PriceChangeReason,
    PriceChangeRecord,
    PriceResolution,
    PricingConfig,
    PricingStatusReport,
    ProductFilter,
    ProductPricingProfile,
    ProductValidation,
    PVPMRecalculation,
    StrategyPreview,
)
from pricing_engine.storage import SqlConfigStore, SqlPriceHistoryStore, SqlProductRepository, init_db

logging.basicConfig(
    level=settings.log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Pricing Engine API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# -----------------------------------------------------------------------------
# Banco e dependências
# -----------------------------------------------------------------------------

@lru_cache()
def get_session_factory() -> sessionmaker:
    engine = create_engine(settings.database_url, future=True)
    init_db(engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@lru_cache()
def get_competitor_source() -> Optional[HttpCompetitorDataSource]:
    if not settings.competitor_api_url:
        logger.info("Fonte de concorrência não configurada; resolução usará apenas PVPM e preço fixo")
        return None
    return HttpCompetitorDataSource(
        base_url=settings.competitor_api_url,
        token=settings.competitor_api_token,
        seller_id=settings.seller_id,
        timeout=settings.competitor_timeout_seconds,
        max_retries=settings.competitor_max_retries,
    )


def get_pricing_service() -> PricingService:
    session_factory = get_session_factory()
    return PricingService(
        products=SqlProductRepository(session_factory),
        config_store=SqlConfigStore(session_factory),
        history_store=SqlPriceHistoryStore(session_factory),
        competitor_source=get_competitor_source(),
    )


def to_http_error(e: Exception) -> HTTPException:
    """Traduz erros do motor para respostas HTTP"""
    if isinstance(e, ProductNotFoundError):
        return HTTPException(status_code=404, detail={"message": str(e)})
    if isinstance(e, ConcurrentUpdateError):
        return HTTPException(status_code=409, detail={"message": str(e)})
    if isinstance(e, (InvalidCostError, InvalidMarginError, MissingShippingTierError,
                      InvalidFixedPriceError, ValueError)):
        return HTTPException(
            status_code=422,
            detail={"message": str(e), "error_type": type(e).__name__},
        )

    logger.exception(f"Erro inesperado no motor de precificação: {e}")
    return HTTPException(status_code=500, detail={"message": f"Erro ao processar precificação: {str(e)}"})


# -----------------------------------------------------------------------------
# Schemas de request/response
# -----------------------------------------------------------------------------

class PVPMResponse(BaseModel):
    """PVPM com memória de cálculo"""
    product_id: str
    pvpm: float
    result: Dict[str, Any]
    breakdown: Dict[str, Any]


class ChangedByRequest(BaseModel):
    changed_by: str = "system"


class FixedPriceRequest(BaseModel):
    """price=None remove o preço fixo"""
    price: Optional[float] = Field(None, allow_inf_nan=False, description="Preço fixo (None para remover)")
    reason: Optional[str] = Field(None, description="Motivo obrigatório ao definir o preço")
    changed_by: str = "system"


class ProfileUpdateRequest(BaseModel):
    changes: Dict[str, Any] = Field(..., description="Campos do perfil a alterar (inclua 'version' lida)")
    changed_by: str = "system"


class BulkRecalculationRequest(BaseModel):
    filter: ProductFilter = Field(default_factory=ProductFilter)
    options: BulkOptions = Field(default_factory=BulkOptions)


# -----------------------------------------------------------------------------
# Endpoints de precificação
# -----------------------------------------------------------------------------

@app.get("/pricing/config", response_model=PricingConfig)
async def get_pricing_config(service: PricingService = Depends(get_pricing_service)):
    return service.get_pricing_config()


@app.put("/pricing/config", response_model=PricingConfig)
async def update_pricing_config(
        config: PricingConfig,
        changed_by: str = "system",
        service: PricingService = Depends(get_pricing_service),
):
    try:
        return service.update_pricing_config(config, changed_by=changed_by)
    except Exception as e:
        raise to_http_error(e)


@app.get("/pricing/products/needing-pvpm-update")
async def get_products_needing_pvpm_update(
        max_age_minutes: int = Query(60, ge=1),
        service: PricingService = Depends(get_pricing_service),
):
    """Produtos com PVPM ausente, zerado ou calculado há mais de max_age_minutes"""
    try:
        product_ids = service.get_products_needing_pvpm_update(max_age_minutes)
        return {"count": len(product_ids), "product_ids": product_ids}
    except Exception as e:
        raise to_http_error(e)


@app.get("/pricing/products/{product_id}/pvpm", response_model=PVPMResponse)
async def get_pvpm(product_id: str, service: PricingService = Depends(get_pricing_service)):
    """
    Calcula o PVPM do produto sem persistir.

    Raises:
        404: Produto inexistente
        422: Custo, margem ou frete inválidos
    """
    try:
        result, breakdown = service.get_pvpm_breakdown(product_id)
        return PVPMResponse(
            product_id=product_id,
            pvpm=result.pvpm,
            result=result.model_dump(),
            breakdown=breakdown.model_dump(),
        )
    except Exception as e:
        raise to_http_error(e)


@app.post("/pricing/products/{product_id}/pvpm/recalculate", response_model=PVPMRecalculation)
async def recalculate_pvpm(
        product_id: str,
        request: ChangedByRequest,
        service: PricingService = Depends(get_pricing_service),
):
    try:
        return service.recalculate_pvpm(product_id, changed_by=request.changed_by)
    except Exception as e:
        raise to_http_error(e)


@app.get("/pricing/products/{product_id}/resolution", response_model=PriceResolution)
async def resolve_price(product_id: str, service: PricingService = Depends(get_pricing_service)):
    """Preço que seria publicado agora, com estratégia e flags de conflito"""
    try:
        return service.resolve_price(product_id)
    except Exception as e:
        raise to_http_error(e)


@app.post("/pricing/products/{product_id}/apply", response_model=PriceApplication)
async def apply_price(
        product_id: str,
        request: ChangedByRequest,
        service: PricingService = Depends(get_pricing_service),
):
    try:
        return service.apply_price(product_id, changed_by=request.changed_by)
    except Exception as e:
        raise to_http_error(e)


@app.put("/pricing/products/{product_id}/fixed-price", response_model=ProductPricingProfile)
async def set_fixed_price(
        product_id: str,
        request: FixedPriceRequest,
        service: PricingService = Depends(get_pricing_service),
):
    try:
        return service.set_fixed_price(product_id, request.price, request.reason, request.changed_by)
    except Exception as e:
        raise to_http_error(e)


@app.patch("/pricing/products/{product_id}/profile", response_model=ProductPricingProfile)
async def update_pricing_profile(
        product_id: str,
        request: ProfileUpdateRequest,
        service: PricingService = Depends(get_pricing_service),
):
    """
    Atualiza o perfil de precificação.

    Raises:
        409: Perfil alterado por outra operação desde a leitura
        422: Campo desconhecido ou valores inválidos
    """
    try:
        return service.update_product_pricing_profile(product_id, request.changes, request.changed_by)
    except Exception as e:
        raise to_http_error(e)


@app.get("/pricing/products/{product_id}/validate", response_model=ProductValidation)
async def validate_product(product_id: str, service: PricingService = Depends(get_pricing_service)):
    try:
        return service.validate_product(product_id)
    except Exception as e:
        raise to_http_error(e)


@app.get("/pricing/products/{product_id}/status", response_model=PricingStatusReport)
async def get_pricing_status(product_id: str, service: PricingService = Depends(get_pricing_service)):
    try:
        return service.determine_pricing_status(product_id)
    except Exception as e:
        raise to_http_error(e)


@app.get("/pricing/products/{product_id}/strategies/{strategy_name}", response_model=StrategyPreview)
async def preview_strategy(
        product_id: str,
        strategy_name: str,
        service: PricingService = Depends(get_pricing_service),
):
    """
    Preço que uma estratégia específica daria ao produto, sem publicar.

    Raises:
        404: Produto ou estratégia inexistente
    """
    if not PricingStrategyFactory.is_supported(strategy_name):
        raise HTTPException(
            status_code=404,
            detail={
                "message": f"Estratégia '{strategy_name}' não encontrada",
                "supported": PricingStrategyFactory.get_supported_strategies(),
            },
        )
    try:
        return service.preview_strategy(product_id, strategy_name)
    except Exception as e:
        raise to_http_error(e)


@app.post("/pricing/bulk-recalculation", response_model=BatchResult)
def bulk_recalculation(
        request: BulkRecalculationRequest,
        service: PricingService = Depends(get_pricing_service),
):
    # síncrono: o FastAPI executa no threadpool e não bloqueia o event loop
    try:
        return service.run_bulk_recalculation(request.filter, request.options)
    except Exception as e:
        raise to_http_error(e)


@app.get("/pricing/history", response_model=List[PriceChangeRecord])
async def get_price_history(
        product_id: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        reasons: Optional[List[PriceChangeReason]] = Query(None),
        batch_id: Optional[str] = None,
        service: PricingService = Depends(get_pricing_service),
):
    try:
        return service.get_price_history(product_id, date_from, date_to, reasons, batch_id)
    except Exception as e:
        raise to_http_error(e)


@app.get("/pricing/history/summary", response_model=HistorySummary)
async def get_history_summary(
        product_id: Optional[str] = None,
        days: int = Query(30, ge=1),
        service: PricingService = Depends(get_pricing_service),
):
    try:
        return service.get_history_summary(product_id, days)
    except Exception as e:
        raise to_http_error(e)


@app.get("/pricing/strategies")
async def get_strategies():
    """Estratégias de resolução em ordem de prioridade"""
    return {"strategies": PricingStrategyFactory.get_supported_strategies()}


# ========= MAIN PARA RODAR DEBUGANDO =========


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app:app", host="127.0.0.1", port=5002, reload=True)
