"""Tabla de transiciones del ciclo de vida de un DTE.

Único lugar donde se decide la legalidad de un cambio de estado. Las capas de
presentación y reportes solo leen ``TaxDocument.state``.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from dte_engine.domain.entities import DocumentState, HistoryEvent, TaxDocument
from dte_engine.domain.exceptions import InvalidTransition


class DocumentEvent(Enum):
    CREATE = "create"
    EDIT = "edit"
    SUBMIT = "submit"
    SUBMISSION_FAILED = "submission_failed"
    ACCEPT = "accept"
    REJECT = "reject"
    VOID = "void"
    DELETE = "delete"


S = DocumentState
E = DocumentEvent

TRANSITIONS: dict[tuple[DocumentState, DocumentEvent], DocumentState] = {
    (S.PENDIENTE, E.EDIT): S.PENDIENTE,
    (S.PENDIENTE, E.SUBMIT): S.ENVIADO,
    (S.RECHAZADO, E.SUBMIT): S.ENVIADO,
    (S.ERROR, E.SUBMIT): S.ENVIADO,
    (S.PENDIENTE, E.SUBMISSION_FAILED): S.ERROR,
    (S.RECHAZADO, E.SUBMISSION_FAILED): S.ERROR,
    (S.ERROR, E.SUBMISSION_FAILED): S.ERROR,
    (S.ENVIADO, E.SUBMISSION_FAILED): S.ERROR,  # el SII informa error de procesamiento
    (S.ENVIADO, E.ACCEPT): S.ACEPTADO,
    (S.ENVIADO, E.REJECT): S.RECHAZADO,
    (S.ACEPTADO, E.VOID): S.ANULADO,
    (S.PENDIENTE, E.DELETE): S.ELIMINADO,
}

# Estados desde los que un envío cuenta como reintento.
RETRY_STATES = frozenset({S.RECHAZADO, S.ERROR})

TERMINAL_STATES = frozenset({S.ANULADO, S.ELIMINADO})


def next_state(current: DocumentState, event: DocumentEvent) -> Optional[DocumentState]:
    return TRANSITIONS.get((current, event))


def can_apply(current: DocumentState, event: DocumentEvent) -> bool:
    return (current, event) in TRANSITIONS


def allowed_events(current: DocumentState) -> list[DocumentEvent]:
    return [event for (state, event) in TRANSITIONS if state is current]


def ensure_allowed(document: TaxDocument, event: DocumentEvent) -> DocumentState:
    target = next_state(document.state, event)
    if target is None:
        raise InvalidTransition(document.id, document.state, event)
    return target


def apply_transition(
    document: TaxDocument,
    event: DocumentEvent,
    at: datetime,
    detail: Optional[str] = None,
    actor: Optional[str] = None,
    reference: Optional[str] = None,
    **changes: Any,
) -> TaxDocument:
    """Retorna una copia del documento en el nuevo estado con un evento más en el historial.

    El timestamp del evento nunca retrocede respecto del último registrado.
    ``reference`` queda en el evento (track id emitido por esta transición);
    ``changes`` se aplica junto con el nuevo estado (totales, track id, glosa...).
    """
    target = ensure_allowed(document, event)

    if document.history and at < document.history[-1].timestamp:
        at = document.history[-1].timestamp

    history_event = HistoryEvent(
        timestamp=at,
        state=target,
        detail=detail,
        actor=actor,
        tracking_reference=reference,
    )
    return replace(
        document,
        state=target,
        history=document.history + (history_event,),
        updated_at=at,
        **changes,
    )


def start_history(document: TaxDocument, at: datetime, actor: Optional[str] = None) -> TaxDocument:
    """Evento inicial de creación: (ninguno) -> PENDIENTE."""
    if document.history:
        raise InvalidTransition(document.id, document.state, DocumentEvent.CREATE, "ya creado")
    if document.state is not DocumentState.PENDIENTE:
        raise InvalidTransition(document.id, document.state, DocumentEvent.CREATE)
    first = HistoryEvent(
        timestamp=at, state=DocumentState.PENDIENTE, detail="Documento creado", actor=actor
    )
    return replace(document, history=(first,), created_at=at, updated_at=at)


def append_note(
    document: TaxDocument,
    at: datetime,
    detail: str,
    actor: Optional[str] = None,
    reference: Optional[str] = None,
) -> TaxDocument:
    """Agrega un evento al historial sin cambiar de estado (p. ej. un track id tardío)."""
    if document.history and at < document.history[-1].timestamp:
        at = document.history[-1].timestamp
    note = HistoryEvent(
        timestamp=at,
        state=document.state,
        detail=detail,
        actor=actor,
        tracking_reference=reference,
    )
    return replace(document, history=document.history + (note,), updated_at=at)
