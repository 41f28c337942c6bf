"""Excepciones de negocio del ciclo de vida de documentos tributarios."""

from __future__ import annotations

from typing import Any, Optional


class DteError(Exception):
    """Base para errores del motor de documentos."""


class InvalidLineItem(DteError):
    """Un ítem no cumple las reglas de cantidad, precio, descuento o descripción."""

    def __init__(self, index: Optional[int], field: str, value: Any, reason: str) -> None:
        self.index = index
        self.field = field
        self.value = value
        self.reason = reason
        where = f"Ítem {index + 1}" if index is not None else "Documento"
        super().__init__(f"{where}: {field}={value!r} {reason}")


class InvalidTaxId(DteError):
    """RUT con formato o dígito verificador incorrecto."""

    def __init__(self, raw: str, reason: str, field: Optional[str] = None) -> None:
        self.raw = raw
        self.reason = reason
        self.field = field
        prefix = f"{field}: " if field else ""
        super().__init__(f"{prefix}RUT inválido '{raw}': {reason}")


class InvalidTransition(DteError):
    """Transición no permitida desde el estado actual."""

    def __init__(self, document_id: Optional[str], state: Any, event: Any, reason: str = "") -> None:
        self.document_id = document_id
        self.state = state
        self.event = event
        self.reason = reason
        state_name = getattr(state, "value", state)
        event_name = getattr(event, "value", event)
        msg = f"Transición '{event_name}' no permitida desde {state_name}"
        if document_id:
            msg += f" (documento {document_id})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class ConflictError(DteError):
    """Ya existe un documento con el mismo tipo y folio."""

    def __init__(self, document_type: Any, folio: int) -> None:
        self.document_type = document_type
        self.folio = folio
        type_code = getattr(document_type, "value", document_type)
        super().__init__(f"Ya existe un documento tipo {type_code} con folio {folio}")


class GatewayError(DteError):
    """Falla de transporte o del SII durante el envío o la consulta."""

    def __init__(self, message: str, retryable: bool = True) -> None:
        self.retryable = retryable
        super().__init__(message)


class DocumentNotFoundError(DteError):
    """No existe un documento con el id indicado."""

    def __init__(self, document_id: str) -> None:
        self.document_id = document_id
        super().__init__(f"Documento no encontrado: {document_id}")
