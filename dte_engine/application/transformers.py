"""Convierte solicitudes JSON de borrador (formato del frontend) en objetos de dominio."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError

from dte_engine.application.dtos import DraftRequest
from dte_engine.domain.entities import AdditionalTax, DocumentType, LineItem
from dte_engine.domain.exceptions import InvalidLineItem, InvalidTaxId
from dte_engine.domain.value_objects import Party, TaxId


class AdditionalTaxPayload(BaseModel):
    codigo: Any
    nombre: str = ""
    porcentaje: Any = 0
    monto: Any = 0


class ItemPayload(BaseModel):
    descripcion: str = ""
    codigo: Any = None
    cantidad: Any
    precio_unitario: Any
    descuento: Any = 0
    exento: bool = False
    impuestos_adicionales: list[AdditionalTaxPayload] = Field(default_factory=list)


class DraftPayload(BaseModel):
    """Forma de ``DocumentoRequest``."""

    tipo: Any
    rut_emisor: str
    rut_receptor: str
    razon_social_emisor: str = ""
    razon_social_receptor: str = ""
    giro_emisor: str = ""
    giro_receptor: str = ""
    email_receptor: Optional[str] = None
    fecha_emision: Any
    fecha_vencimiento: Any = None
    items: list[ItemPayload]


class DraftPayloadTransformer:
    def __init__(self, date_format: str = "%d-%m-%Y") -> None:
        self.date_format = date_format

    def transform(self, payload: dict) -> DraftRequest:
        try:
            model = DraftPayload.model_validate(payload)
        except ValidationError as e:
            fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
            raise ValueError(f"Solicitud de borrador inválida, campos: {fields}") from e

        return DraftRequest(
            document_type=DocumentType.from_code(model.tipo),
            issuer=Party(
                tax_id=self._parse_tax_id(model.rut_emisor, "rut_emisor"),
                business_name=self._clean_string(model.razon_social_emisor),
                activity=self._clean_string(model.giro_emisor),
            ),
            recipient=Party(
                tax_id=self._parse_tax_id(model.rut_receptor, "rut_receptor"),
                business_name=self._clean_string(model.razon_social_receptor),
                activity=self._clean_string(model.giro_receptor),
                email=self._clean_string(model.email_receptor) or None,
            ),
            issue_date=self._parse_date(model.fecha_emision),
            due_date=(
                self._parse_date(model.fecha_vencimiento)
                if model.fecha_vencimiento not in (None, "")
                else None
            ),
            items=tuple(self._transform_item(item, idx) for idx, item in enumerate(model.items)),
        )

    def _transform_item(self, item: ItemPayload, index: int) -> LineItem:
        return LineItem(
            description=self._clean_string(item.descripcion),
            code=self._clean_string(item.codigo),
            quantity=self._item_number(item.cantidad, index, "quantity", money=False),
            unit_price=self._item_number(item.precio_unitario, index, "unit_price"),
            discount_pct=self._item_number(
                item.descuento or 0, index, "discount_pct", money=False
            ),
            exempt=item.exento,
            additional_taxes=tuple(
                AdditionalTax(
                    code=self._clean_string(tax.codigo),
                    name=self._clean_string(tax.nombre),
                    rate=self._item_number(
                        tax.porcentaje or 0, index, "additional_taxes", money=False
                    ),
                    amount=self._item_number(tax.monto or 0, index, "additional_taxes"),
                )
                for tax in item.impuestos_adicionales
            ),
        )

    def _item_number(self, value: object, index: int, field: str, money: bool = True) -> Decimal:
        try:
            if money:
                return self._parse_money(value)
            return self._parse_number(value)
        except ValueError:
            raise InvalidLineItem(index, field, value, "no es un número válido") from None

    @staticmethod
    def _parse_tax_id(raw: str, field: str) -> TaxId:
        try:
            return TaxId.parse(raw)
        except InvalidTaxId as e:
            raise InvalidTaxId(str(raw), e.reason, field=field) from None

    @staticmethod
    def _clean_string(value: object) -> str:
        if value is None:
            return ""
        return str(value).strip()

    def _parse_date(self, value: object) -> date:
        if isinstance(value, date) and not isinstance(value, datetime):
            return value
        if isinstance(value, datetime):
            return value.date()
        s = str(value).strip()
        for fmt in [self.date_format, "%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y"]:
            try:
                return datetime.strptime(s, fmt).date()
            except ValueError:
                continue
        raise ValueError(f"Formato de fecha no reconocido: '{value}'")

    @staticmethod
    def _parse_number(value: object) -> Decimal:
        """Cantidades y porcentajes: acepta coma decimal (1,5)."""
        if isinstance(value, Decimal):
            return value
        if isinstance(value, (int, float)):
            return Decimal(str(value))
        s = str(value).strip().replace("%", "").replace(" ", "").replace(",", ".")
        try:
            return Decimal(s)
        except InvalidOperation as e:
            raise ValueError(f"Número inválido: '{value}'") from e

    @staticmethod
    def _parse_money(value: object) -> Decimal:
        if isinstance(value, Decimal):
            return value
        if isinstance(value, (int, float)):
            return Decimal(str(value))
        s = str(value).strip()
        s = s.replace("$", "").replace(" ", "")
        # 1.234.567 es formato chileno; 1,234.56 formato US
        if "." in s and "," in s:
            if s.rindex(".") > s.rindex(","):
                s = s.replace(",", "")
            else:
                s = s.replace(".", "").replace(",", ".")
        elif "," in s and s.count(",") == 1:
            s = s.replace(",", ".")
        elif "." in s and s.count(".") > 1:
            s = s.replace(".", "")
        elif "." in s and s.count(".") == 1:
            # Un punto con exactamente 3 dígitos después = miles (12.345 → 12345)
            parts = s.split(".")
            if len(parts[1]) == 3:
                s = s.replace(".", "")
        try:
            return Decimal(s)
        except InvalidOperation as e:
            raise ValueError(f"Monto inválido: '{value}'") from e
