"""Motor de totales: de ítems a neto, IVA, exento y total."""

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from dte_engine.domain.entities import DocumentTotals, LineItem
from dte_engine.domain.exceptions import InvalidLineItem

IVA_RATE = Decimal("0.19")

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


def round_clp(amount: Decimal) -> int:
    """Redondeo half-up (lejos de cero) a peso entero."""
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def validate_item(item: LineItem, index: int) -> None:
    if not item.description or not item.description.strip():
        raise InvalidLineItem(index, "description", item.description, "no puede estar vacía")
    if not item.quantity.is_finite() or item.quantity <= _ZERO:
        raise InvalidLineItem(index, "quantity", item.quantity, "debe ser mayor que 0")
    if not item.unit_price.is_finite() or item.unit_price < _ZERO:
        raise InvalidLineItem(index, "unit_price", item.unit_price, "no puede ser negativo")
    if item.unit_price != item.unit_price.to_integral_value():
        raise InvalidLineItem(
            index, "unit_price", item.unit_price, "debe ser un monto entero en pesos"
        )
    if not item.discount_pct.is_finite() or not (_ZERO <= item.discount_pct <= _HUNDRED):
        raise InvalidLineItem(
            index, "discount_pct", item.discount_pct, "debe estar entre 0 y 100"
        )


def compute_totals(items: Iterable[LineItem]) -> DocumentTotals:
    """
    Calcula los totales de un documento.

    Función pura: los subtotales de línea se acumulan a precisión completa y
    el redondeo se aplica una sola vez sobre los agregados. El IVA se calcula
    sobre el neto ya redondeado, de modo que total == neto + iva + exento.
    Una lista vacía produce totales en cero; exigir al menos un ítem le
    corresponde a la creación del documento.
    """
    net_acc = _ZERO
    exempt_acc = _ZERO
    additional_acc = _ZERO

    for index, item in enumerate(items):
        validate_item(item, index)
        if item.exempt:
            exempt_acc += item.subtotal
        else:
            net_acc += item.subtotal
        for extra in item.additional_taxes:
            additional_acc += extra.amount

    net = round_clp(net_acc)
    exempt = round_clp(exempt_acc)
    tax = round_clp(Decimal(net) * IVA_RATE)

    return DocumentTotals(
        net=net,
        exempt=exempt,
        tax=tax,
        total=net + tax + exempt,
        additional_tax=round_clp(additional_acc),
    )
