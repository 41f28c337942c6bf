"""Caso de uso principal: ciclo de vida de un DTE desde borrador hasta respuesta del SII."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Callable, Iterable, Optional

import structlog

from dte_engine.application.dtos import (
    AuthorityResponse,
    AuthorityVerdict,
    DocumentStatistics,
    DraftRequest,
)
from dte_engine.application.locks import DocumentLockRegistry
from dte_engine.application.ports.artifact_renderer import ArtifactRenderer
from dte_engine.application.ports.document_repository import DocumentRepository
from dte_engine.application.ports.submission_gateway import SubmissionGateway
from dte_engine.domain.entities import (
    DocumentState,
    DocumentTotals,
    LineItem,
    TaxDocument,
)
from dte_engine.domain.exceptions import GatewayError, InvalidLineItem, InvalidTransition
from dte_engine.domain.state_machine import (
    RETRY_STATES,
    DocumentEvent,
    append_note,
    apply_transition,
    ensure_allowed,
    start_history,
)
from dte_engine.domain.totals import compute_totals

logger = structlog.get_logger()

_VERDICT_EVENTS = {
    AuthorityVerdict.ACCEPTED: DocumentEvent.ACCEPT,
    AuthorityVerdict.REJECTED: DocumentEvent.REJECT,
    AuthorityVerdict.ERROR: DocumentEvent.SUBMISSION_FAILED,
}


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class DocumentLifecycleService:
    """Operaciones expuestas a los llamadores sobre un documento tributario.

    Toda operación que cambia estado toma el lock del documento, relee desde el
    repositorio y persiste la nueva instancia antes de liberarlo. Las lecturas
    (``get``) no toman lock.
    """

    repository: DocumentRepository
    gateway: SubmissionGateway
    renderer: Optional[ArtifactRenderer] = None
    locks: DocumentLockRegistry = field(default_factory=DocumentLockRegistry)
    clock: Callable[[], datetime] = _utcnow
    id_factory: Callable[[], str] = _new_id

    def __post_init__(self) -> None:
        bind = getattr(self.gateway, "bind_late_reference_handler", None)
        if bind is not None:
            bind(self.record_late_tracking_reference)

    # ── Lecturas ──────────────────────────────────────────────────

    def get(self, document_id: str) -> TaxDocument:
        return self.repository.get(document_id)

    def get_totals_preview(self, items: Iterable[LineItem]) -> DocumentTotals:
        return compute_totals(items)

    def get_statistics(self) -> DocumentStatistics:
        return DocumentStatistics.from_counts(self.repository.count_by_state())

    # ── Borrador ──────────────────────────────────────────────────

    def create_draft(
        self, request: DraftRequest, folio: int, actor: Optional[str] = None
    ) -> TaxDocument:
        items = tuple(request.items)
        if not items:
            raise InvalidLineItem(None, "items", 0, "el documento requiere al menos un ítem")
        totals = compute_totals(items)

        document = TaxDocument(
            id=self.id_factory(),
            document_type=request.document_type,
            folio=folio,
            issuer=request.issuer,
            recipient=request.recipient,
            issue_date=request.issue_date,
            due_date=request.due_date,
            items=items,
            totals=totals,
            state=DocumentState.PENDIENTE,
        )
        document = start_history(document, self.clock(), actor)
        self.repository.save(document)

        logger.info(
            "document_created",
            document_id=document.id,
            document_type=document.document_type.value,
            folio=folio,
            total=totals.total,
        )
        return document

    def edit_draft(
        self, document_id: str, request: DraftRequest, actor: Optional[str] = None
    ) -> TaxDocument:
        with self.locks.hold(document_id):
            current = self.repository.get(document_id)
            if not current.state.is_editable:
                raise InvalidTransition(
                    document_id,
                    current.state,
                    DocumentEvent.EDIT,
                    "los ítems solo se pueden editar en PENDIENTE",
                )
            if request.document_type is not current.document_type:
                raise InvalidTransition(
                    document_id,
                    current.state,
                    DocumentEvent.EDIT,
                    "el tipo de documento no se puede cambiar",
                )

            items = tuple(request.items)
            if not items:
                raise InvalidLineItem(None, "items", 0, "el documento requiere al menos un ítem")
            totals = compute_totals(items)

            changes = {
                "items": items,
                "totals": totals,
                "issuer": request.issuer,
                "recipient": request.recipient,
                "issue_date": request.issue_date,
                "due_date": request.due_date,
            }
            if not replace(current, **changes).has_changes_vs(current):
                logger.info("document_edit_noop", document_id=document_id)
                return current

            updated = apply_transition(
                current,
                DocumentEvent.EDIT,
                self.clock(),
                detail="Borrador editado",
                actor=actor,
                **changes,
            )
            self.repository.save(updated)
            logger.info("document_edited", document_id=document_id, total=totals.total)
            return updated

    # ── Envío al SII ──────────────────────────────────────────────

    def submit(self, document_id: str, actor: Optional[str] = None) -> TaxDocument:
        """Envía (o reenvía desde RECHAZADO/ERROR) el documento al SII.

        Una falla del gateway, de cualquier tipo, no se propaga: deja el documento
        en ERROR con el detalle, listo para reintentar.
        """
        with self.locks.hold(document_id):
            current = self.repository.get(document_id)
            ensure_allowed(current, DocumentEvent.SUBMIT)
            is_retry = current.state in RETRY_STATES

            totals = compute_totals(current.items)
            if totals != current.totals:
                if current.state is not DocumentState.PENDIENTE:
                    logger.error(
                        "totals_mismatch",
                        document_id=document_id,
                        stored=current.totals,
                        computed=totals,
                    )
                    raise InvalidTransition(
                        document_id,
                        current.state,
                        DocumentEvent.SUBMIT,
                        "los totales guardados no coinciden con los ítems",
                    )
                current = replace(current, totals=totals)

            log = logger.bind(
                document_id=document_id,
                folio=current.folio,
                document_type=current.document_type.value,
                retry=is_retry,
            )

            try:
                tracking_reference = self.gateway.submit(current)
                if not tracking_reference:
                    raise GatewayError("El SII no retornó track id")
            except Exception as e:
                failed = apply_transition(
                    current,
                    DocumentEvent.SUBMISSION_FAILED,
                    self.clock(),
                    detail=f"Error de envío: {e}",
                    actor=actor,
                    last_error=str(e),
                )
                self.repository.save(failed)
                log.warning("gateway_failed", error=str(e), error_type=type(e).__name__)
                return failed

            if is_retry and current.tracking_reference:
                detail = f"Reenviado al SII (track anterior {current.tracking_reference})"
            else:
                detail = "Enviado al SII"

            sent = apply_transition(
                current,
                DocumentEvent.SUBMIT,
                self.clock(),
                detail=detail,
                actor=actor,
                reference=tracking_reference,
                tracking_reference=tracking_reference,
                authority_status_message=None,
                last_error=None,
            )
            try:
                self.repository.save(sent)
            except Exception:
                # El SII ya tiene el documento: el track id debe quedar en el log.
                log.error("tracking_reference_not_persisted", tracking_reference=tracking_reference)
                raise

            log.info("document_submitted", tracking_reference=tracking_reference)
            return sent

    def ingest_authority_response(
        self,
        document_id: str,
        response: AuthorityResponse,
        actor: Optional[str] = None,
    ) -> TaxDocument:
        """Aplica la respuesta del SII (consulta de estado o callback)."""
        with self.locks.hold(document_id):
            current = self.repository.get(document_id)

            if response.verdict is AuthorityVerdict.PENDING:
                if current.state is not DocumentState.ENVIADO:
                    raise InvalidTransition(
                        document_id, current.state, "authority_pending", "no hay envío en curso"
                    )
                logger.info(
                    "authority_response_pending",
                    document_id=document_id,
                    raw_status=response.raw_status,
                )
                return current

            event = _VERDICT_EVENTS[response.verdict]
            if self._is_duplicate(current, event, response):
                logger.info(
                    "authority_response_duplicate",
                    document_id=document_id,
                    state=current.state.value,
                )
                return current
            if current.state is not DocumentState.ENVIADO:
                raise InvalidTransition(
                    document_id, current.state, event, "el SII solo responde a documentos enviados"
                )

            changes: dict = {"authority_status_message": response.glosa or None}
            if event is DocumentEvent.SUBMISSION_FAILED:
                changes["last_error"] = response.glosa or "Error informado por el SII"

            updated = apply_transition(
                current,
                event,
                self.clock(),
                detail=response.glosa or None,
                actor=actor,
                **changes,
            )
            self.repository.save(updated)
            logger.info(
                "authority_response_ingested",
                document_id=document_id,
                state=updated.state.value,
                raw_status=response.raw_status,
                glosa=response.glosa,
            )
            return updated

    def poll_status(self, document_id: str, actor: Optional[str] = None) -> TaxDocument:
        """Consulta el estado en el SII e ingresa la respuesta.

        Un error de transporte en la consulta se propaga y deja el documento en
        ENVIADO: el envío ya ocurrió y puede volver a consultarse.
        """
        current = self.repository.get(document_id)
        if current.state is not DocumentState.ENVIADO or not current.tracking_reference:
            raise InvalidTransition(document_id, current.state, "poll", "no hay envío en curso")
        response = self.gateway.poll_status(current.tracking_reference)
        return self.ingest_authority_response(document_id, response, actor=actor)

    def record_late_tracking_reference(
        self, document_id: str, tracking_reference: str, actor: Optional[str] = None
    ) -> TaxDocument:
        """Persiste un track id que el SII entregó después del timeout de envío.

        Si el documento sigue en ERROR por ese timeout, se adopta el track id y
        pasa a ENVIADO: el SII ya tiene el folio y no debe reenviarse. En otro
        estado el track id queda en el historial sin cambiar el estado.
        """
        with self.locks.hold(document_id):
            current = self.repository.get(document_id)
            if tracking_reference in current.tracking_references:
                return current

            if current.state is DocumentState.ERROR:
                updated = apply_transition(
                    current,
                    DocumentEvent.SUBMIT,
                    self.clock(),
                    detail=f"Track id recibido después del timeout ({tracking_reference})",
                    actor=actor,
                    reference=tracking_reference,
                    tracking_reference=tracking_reference,
                    authority_status_message=None,
                    last_error=None,
                )
                self.repository.save(updated)
                logger.info(
                    "late_tracking_reference_adopted",
                    document_id=document_id,
                    tracking_reference=tracking_reference,
                )
                return updated

            updated = append_note(
                current,
                self.clock(),
                detail=(
                    f"Track id tardío {tracking_reference} recibido en estado "
                    f"{current.state.value}; requiere conciliación"
                ),
                actor=actor,
                reference=tracking_reference,
            )
            updated = replace(
                updated,
                last_error=f"Track id tardío sin conciliar: {tracking_reference}",
            )
            self.repository.save(updated)
            logger.error(
                "late_tracking_reference_unreconciled",
                document_id=document_id,
                state=current.state.value,
                tracking_reference=tracking_reference,
            )
            return updated

    # ── Acciones administrativas ─────────────────────────────────

    def void(
        self, document_id: str, reason: Optional[str] = None, actor: Optional[str] = None
    ) -> TaxDocument:
        with self.locks.hold(document_id):
            current = self.repository.get(document_id)
            updated = apply_transition(
                current,
                DocumentEvent.VOID,
                self.clock(),
                detail=reason or "Documento anulado",
                actor=actor,
            )
            self.repository.save(updated)
            logger.info("document_voided", document_id=document_id, reason=reason)
            return updated

    def delete(self, document_id: str, actor: Optional[str] = None) -> TaxDocument:
        """Descarta un borrador. El historial registra la eliminación antes del borrado."""
        with self.locks.hold(document_id):
            current = self.repository.get(document_id)
            deleted = apply_transition(
                current,
                DocumentEvent.DELETE,
                self.clock(),
                detail="Borrador eliminado",
                actor=actor,
            )
            self.repository.save(deleted)
            self.repository.delete(document_id)
            logger.info("document_deleted", document_id=document_id, folio=current.folio)
            return deleted

    # ── Artefactos ────────────────────────────────────────────────

    def render_artifacts(self, document_id: str) -> TaxDocument:
        """Genera XML y PDF.

        En ACEPTADO las referencias se persisten; en PENDIENTE es una vista
        previa y el documento guardado no cambia. El estado nunca se modifica.
        """
        if self.renderer is None:
            raise RuntimeError("No hay renderer de artefactos configurado")

        with self.locks.hold(document_id):
            current = self.repository.get(document_id)
            if current.state not in (DocumentState.ACEPTADO, DocumentState.PENDIENTE):
                raise InvalidTransition(
                    document_id,
                    current.state,
                    "render",
                    "solo documentos aceptados o borradores (vista previa)",
                )

            xml_path = self.renderer.render(current, "xml")
            pdf_path = self.renderer.render(current, "pdf")
            rendered = replace(current, xml_ref=str(xml_path), pdf_ref=str(pdf_path))

            if current.state is DocumentState.ACEPTADO:
                self.repository.save(rendered)
                logger.info("artifacts_rendered", document_id=document_id, pdf=str(pdf_path))
            else:
                logger.info("artifacts_preview", document_id=document_id, pdf=str(pdf_path))
            return rendered

    @staticmethod
    def _is_duplicate(
        current: TaxDocument, event: DocumentEvent, response: AuthorityResponse
    ) -> bool:
        """Una respuesta repetida del SII (reintento de consulta o callback) no genera evento."""
        repeated_state = {
            DocumentEvent.ACCEPT: DocumentState.ACEPTADO,
            DocumentEvent.REJECT: DocumentState.RECHAZADO,
            DocumentEvent.SUBMISSION_FAILED: DocumentState.ERROR,
        }[event]
        return (
            current.state is repeated_state
            and (current.authority_status_message or "") == (response.glosa or "")
        )
