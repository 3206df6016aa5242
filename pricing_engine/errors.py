class PricingError(Exception):
    """Base exception para erros do motor de precificação"""
    pass


class InvalidCostError(PricingError):
    """Custo resolvido ausente ou negativo"""
    pass


class InvalidMarginError(PricingError):
    """Margem resolvida fora de (0, 1]"""
    pass


class MissingShippingTierError(PricingError):
    """Nenhuma faixa de frete aplicável e nenhum frete padrão configurado"""
    pass


class StaleCompetitorDataError(PricingError):
    """Dados de concorrência mais antigos que a frequência de atualização"""

    def __init__(self, message: str, observed_at=None, max_age_minutes: int = 0):
        super().__init__(message)
        self.observed_at = observed_at
        self.max_age_minutes = max_age_minutes


class PriceFloorViolationError(PricingError):
    """Preço resolvido abaixo do PVPM por um caminho que não é o preço fixo"""
    pass


class InvalidFixedPriceError(PricingError):
    """Preço fixo inválido (não positivo ou sem motivo)"""
    pass


class ProductNotFoundError(PricingError):
    """Produto inexistente no repositório"""
    pass


class ConcurrentUpdateError(PricingError):
    """Perfil de precificação alterado por outra operação desde a leitura"""
    pass


class CompetitorDataSourceError(PricingError):
    """Falha ao consultar a fonte de ofertas concorrentes"""
    pass
