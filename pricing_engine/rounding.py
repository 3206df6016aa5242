from decimal import Decimal, ROUND_UP


def round_money(value: float) -> float:
    """Arredondamento de apresentação (2 casas)"""
    return round(value, 2)


def publishable_price(value: float) -> float:
    """
    Preço enviado ao canal: arredonda para cima no centavo, assim o valor
    publicado nunca fica abaixo do preço calculado.
    """
    # round(…, 6) descarta resíduos de ponto flutuante (20.310000000000002)
    return float(Decimal(str(round(value, 6))).quantize(Decimal("0.01"), rounding=ROUND_UP))
