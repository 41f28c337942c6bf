"""Entidades de dominio del ciclo de vida de documentos tributarios electrónicos."""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Optional

from dte_engine.domain.exceptions import InvalidLineItem
from dte_engine.domain.value_objects import Party


class DocumentState(Enum):
    """Estado autoritativo de un DTE."""

    PENDIENTE = "PENDIENTE"  # Borrador editable
    ENVIADO = "ENVIADO"  # Esperando respuesta del SII
    ACEPTADO = "ACEPTADO"
    RECHAZADO = "RECHAZADO"
    ERROR = "ERROR"  # Falla de envío o procesamiento, reintentable
    ANULADO = "ANULADO"
    ELIMINADO = "ELIMINADO"  # Borrador descartado; la fila queda con soft delete

    @property
    def is_editable(self) -> bool:
        return self is DocumentState.PENDIENTE


class DocumentType(Enum):
    """Códigos SII de tipo de documento."""

    FACTURA = "33"
    FACTURA_EXENTA = "34"
    BOLETA = "39"
    GUIA_DESPACHO = "52"
    NOTA_DEBITO = "56"
    NOTA_CREDITO = "61"

    @property
    def label(self) -> str:
        return _TYPE_LABELS[self]

    @classmethod
    def from_code(cls, code: object) -> "DocumentType":
        value = str(code).strip()
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Tipo de documento desconocido: '{code}'") from None


_TYPE_LABELS = {
    DocumentType.FACTURA: "Factura Electrónica",
    DocumentType.FACTURA_EXENTA: "Factura Exenta Electrónica",
    DocumentType.BOLETA: "Boleta Electrónica",
    DocumentType.GUIA_DESPACHO: "Guía Despacho Electrónica",
    DocumentType.NOTA_DEBITO: "Nota Débito Electrónica",
    DocumentType.NOTA_CREDITO: "Nota Crédito Electrónica",
}


def _to_decimal(value: object, index: Optional[int], field_name: str) -> Decimal:
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidLineItem(index, field_name, value, "no es un número") from None


@dataclass(frozen=True)
class AdditionalTax:
    """Impuesto adicional o retención asociado a un ítem."""

    code: str
    rate: Decimal
    amount: Decimal
    name: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "rate", _to_decimal(self.rate, None, "rate"))
        object.__setattr__(self, "amount", _to_decimal(self.amount, None, "amount"))


@dataclass(frozen=True, kw_only=True)
class LineItem:
    """
    Línea de detalle de un documento.

    Los rangos (cantidad, precio, descuento) los valida el motor de totales,
    que conoce la posición del ítem dentro del documento.
    """

    description: str
    quantity: Decimal
    unit_price: Decimal
    discount_pct: Decimal = Decimal("0")
    exempt: bool = False
    additional_taxes: tuple[AdditionalTax, ...] = ()
    code: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "quantity", _to_decimal(self.quantity, None, "quantity"))
        object.__setattr__(self, "unit_price", _to_decimal(self.unit_price, None, "unit_price"))
        object.__setattr__(
            self, "discount_pct", _to_decimal(self.discount_pct, None, "discount_pct")
        )
        object.__setattr__(self, "additional_taxes", tuple(self.additional_taxes))

    @property
    def gross_amount(self) -> Decimal:
        return self.quantity * self.unit_price

    @property
    def discount_amount(self) -> Decimal:
        return self.gross_amount * self.discount_pct / Decimal("100")

    @property
    def subtotal(self) -> Decimal:
        """Monto de la línea a precisión completa (sin redondear)."""
        return self.gross_amount - self.discount_amount


@dataclass(frozen=True)
class DocumentTotals:
    """Totales derivados de los ítems. Solo los produce compute_totals."""

    net: int = 0
    exempt: int = 0
    tax: int = 0
    total: int = 0
    additional_tax: int = 0


@dataclass(frozen=True)
class HistoryEvent:
    """Registro inmutable de una transición."""

    timestamp: datetime
    state: DocumentState
    detail: Optional[str] = None
    actor: Optional[str] = None
    tracking_reference: Optional[str] = None


@dataclass(frozen=True, kw_only=True)
class TaxDocument:
    """
    Entidad central: un documento tributario electrónico.

    Inmutable: cada transición produce una nueva instancia, de modo que una
    validación fallida nunca deja el documento a medio modificar.
    """

    id: str
    document_type: DocumentType
    folio: int
    issuer: Party
    recipient: Party
    issue_date: date
    items: tuple[LineItem, ...]
    totals: DocumentTotals
    state: DocumentState
    history: tuple[HistoryEvent, ...] = ()
    due_date: Optional[date] = None
    tracking_reference: Optional[str] = None
    authority_status_message: Optional[str] = None
    last_error: Optional[str] = None
    xml_ref: Optional[str] = None
    pdf_ref: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "items", tuple(self.items))
        object.__setattr__(self, "history", tuple(self.history))
        if not self.id:
            raise ValueError("id no puede estar vacío")
        if self.folio is None or int(self.folio) <= 0:
            raise ValueError(f"folio debe ser positivo: {self.folio}")
        if not self.items:
            raise InvalidLineItem(None, "items", 0, "el documento requiere al menos un ítem")
        if self.history:
            if self.history[-1].state is not self.state:
                raise ValueError(
                    f"state ({self.state.value}) no coincide con el último evento "
                    f"del historial ({self.history[-1].state.value})"
                )
            for prev, cur in zip(self.history, self.history[1:]):
                if cur.timestamp < prev.timestamp:
                    raise ValueError("historial fuera de orden temporal")

    @property
    def key(self) -> tuple[str, int]:
        """Clave de unicidad (tipo, folio)."""
        return (self.document_type.value, self.folio)

    @property
    def projected_state(self) -> Optional[DocumentState]:
        """Estado reconstruido desde el historial."""
        return self.history[-1].state if self.history else None

    @property
    def tracking_references(self) -> list[str]:
        """Todos los track id emitidos, en orden."""
        return [e.tracking_reference for e in self.history if e.tracking_reference]

    def has_changes_vs(self, other: "TaxDocument") -> bool:
        """Compara campos editables de borrador."""
        return (
            self.items != other.items
            or self.issuer != other.issuer
            or self.recipient != other.recipient
            or self.issue_date != other.issue_date
            or self.due_date != other.due_date
        )
