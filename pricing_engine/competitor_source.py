"""
Fonte HTTP de ofertas concorrentes do marketplace.

Consulta GET {base_url}/products/{product_id}/offers e espera:

    {"offers": [{"sellerId": "...", "sellerName": "...", "price": 99.9,
                 "isFba": false, "hasBuyBox": true,
                 "observedAt": "2024-05-01T12:00:00Z"}]}
"""
import logging
import math
import time
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from pricing_engine.competitor import sort_offers
from pricing_engine.errors import CompetitorDataSourceError
from pricing_engine.interface import ICompetitorDataSource
from pricing_engine.models import CompetitorOffer

logger = logging.getLogger(__name__)


class HttpCompetitorDataSource(ICompetitorDataSource):

    def __init__(
            self,
            base_url: str,
            token: Optional[str] = None,
            seller_id: Optional[str] = None,
            timeout: float = 10.0,
            max_retries: int = 1,
            backoff_seconds: float = 1.0,
            client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.seller_id = seller_id
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.client = client or httpx.Client()

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def fetch_offers(self, product_id: str) -> List[CompetitorOffer]:
        """
        Busca as ofertas com retry exponencial.

        Returns:
            Ofertas ordenadas (menor preço primeiro); lista vazia se o produto
            não tiver anúncios (HTTP 404)

        Raises:
            CompetitorDataSourceError: Timeout ou erro HTTP após todas as tentativas
        """
        url = f"{self.base_url}/products/{product_id}/offers"
        total_attempts = self.max_retries + 1
        last_error = None

        for attempt in range(total_attempts):
            if attempt > 0:
                delay = self.backoff_seconds * 2 ** (attempt - 1)
                logger.info(f"[{product_id}] Tentativa {attempt + 1}/{total_attempts} após {delay}s")
                time.sleep(delay)

            try:
                response = self.client.get(url, headers=self._headers(), timeout=self.timeout)

                if response.status_code == 404:
                    logger.info(f"[{product_id}] Nenhuma oferta no marketplace")
                    return []
                if response.status_code != 200:
                    raise CompetitorDataSourceError(f"Erro HTTP {response.status_code}")

                offers = self.parse_offers(response.json())
                logger.debug(f"[{product_id}] {len(offers)} ofertas obtidas")
                return offers

            except httpx.TimeoutException as e:
                last_error = e
                logger.warning(f"[{product_id}] Timeout na tentativa {attempt + 1}")
            except (httpx.HTTPError, CompetitorDataSourceError, ValueError) as e:
                last_error = e
                logger.error(f"[{product_id}] Erro na tentativa {attempt + 1}: {e}")

        raise CompetitorDataSourceError(f"Falha após {total_attempts} tentativas: {last_error}")

    def parse_offers(self, payload: Any) -> List[CompetitorOffer]:
        """
        Converte a resposta da API em ofertas.

        Entradas que não são objetos ou com campos inválidos são descartadas
        individualmente.

        Raises:
            CompetitorDataSourceError: Se a resposta não contiver uma lista de ofertas
        """
        raw_offers = payload.get("offers", []) if isinstance(payload, dict) else payload
        if raw_offers is None:
            raw_offers = []
        if not isinstance(raw_offers, list):
            raise CompetitorDataSourceError(
                f"Resposta de ofertas inválida: esperada uma lista, recebido {type(raw_offers).__name__}"
            )

        offers = []
        for raw in raw_offers:
            if not isinstance(raw, dict):
                logger.warning(f"Oferta ignorada, formato inesperado: {raw!r}")
                continue
            try:
                price = float(raw.get("price") or 0)
            except (ValueError, TypeError):
                continue
            # ofertas sem preço não participam da disputa
            if not math.isfinite(price) or price <= 0:
                continue

            seller_id = str(raw.get("sellerId", ""))
            try:
                offers.append(CompetitorOffer(
                    seller_id=seller_id,
                    seller_name=raw.get("sellerName") or "",
                    price=price,
                    is_fba=bool(raw.get("isFba", False)),
                    has_buy_box=bool(raw.get("hasBuyBox", False)),
                    is_own_offer=bool(self.seller_id) and seller_id == self.seller_id,
                    observed_at=raw.get("observedAt"),
                ))
            except ValidationError as e:
                logger.warning(f"Oferta de '{seller_id}' ignorada: {e.error_count()} campo(s) inválido(s)")

        return sort_offers(offers)
