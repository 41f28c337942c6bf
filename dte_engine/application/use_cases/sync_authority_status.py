"""Caso de uso batch: consulta en el SII el estado de todos los documentos ENVIADO."""

from dataclasses import dataclass
import uuid

import structlog

from dte_engine.application.dtos import SyncReport
from dte_engine.application.ports.document_repository import DocumentRepository
from dte_engine.application.use_cases.document_lifecycle import DocumentLifecycleService
from dte_engine.domain.entities import DocumentState
from dte_engine.domain.exceptions import DteError

logger = structlog.get_logger()

_STATE_COUNTERS = {
    DocumentState.ACEPTADO: "accepted",
    DocumentState.RECHAZADO: "rejected",
    DocumentState.ERROR: "failed",
    DocumentState.ENVIADO: "still_pending",
}


@dataclass(frozen=True)
class SyncAuthorityStatusUseCase:
    repository: DocumentRepository
    lifecycle: DocumentLifecycleService
    actor: str = "sync-sii"

    def execute(self) -> SyncReport:
        run_id = str(uuid.uuid4())
        report = SyncReport(run_id=run_id)
        log = logger.bind(run_id=run_id)

        try:
            pending = self.repository.list_by_state(DocumentState.ENVIADO)
        except Exception as e:
            report.status = "ERROR"
            report.errors.append({"document_id": "N/A", "error": str(e)})
            log.error("status_sync_fatal_error", error=str(e))
            return report

        if not pending:
            report.status = "NO_DOCUMENTS"
            log.info("status_sync_no_documents")
            return report

        for document in pending:
            report.polled += 1
            try:
                updated = self.lifecycle.poll_status(document.id, actor=self.actor)
            except (DteError, OSError) as e:
                report.errors.append(
                    {"document_id": document.id, "folio": document.folio, "error": str(e)}
                )
                log.error(
                    "status_sync_document_error",
                    document_id=document.id,
                    folio=document.folio,
                    error=str(e),
                )
                continue

            counter = _STATE_COUNTERS.get(updated.state)
            if counter:
                setattr(report, counter, getattr(report, counter) + 1)

        if not report.errors:
            report.status = "SUCCESS"
        elif len(report.errors) < report.polled:
            report.status = "PARTIAL"
        else:
            report.status = "ERROR"

        log.info(
            "status_sync_finished",
            status=report.status,
            polled=report.polled,
            accepted=report.accepted,
            rejected=report.rejected,
            failed=report.failed,
            pending=report.still_pending,
        )
        return report
