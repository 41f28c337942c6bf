"""Integration tests: real lifecycle service + SqliteDocumentRepository.

Only the external boundary (SII gateway, renderer, notifier) is faked.
"""

import threading
import time

import pytest

from dte_engine.application.config import EmailConfig
from dte_engine.application.dtos import AuthorityResponse
from dte_engine.application.use_cases.document_lifecycle import DocumentLifecycleService
from dte_engine.application.use_cases.send_document_email import SendDocumentByEmailUseCase
from dte_engine.application.use_cases.sync_authority_status import SyncAuthorityStatusUseCase
from dte_engine.domain.entities import DocumentState, LineItem
from dte_engine.domain.exceptions import (
    ConflictError,
    DocumentNotFoundError,
    GatewayError,
    InvalidTransition,
)
from dte_engine.infrastructure.sqlite_repository import SqliteDocumentRepository
from dte_engine.infrastructure.timeout_gateway import TimeoutSubmissionGateway
from tests.integration.conftest import FakeGateway, draft_request


def _wait_until_settled(gateway: TimeoutSubmissionGateway, document_id: str, limit: float = 3.0) -> None:
    deadline = time.monotonic() + limit
    while gateway.has_submission_in_flight(document_id):
        assert time.monotonic() < deadline, "el envío tardío nunca terminó"
        time.sleep(0.01)


class TestHappyPath:
    def test_draft_to_accepted_and_emailed(self, service, repository, gateway, renderer, notifier):
        doc = service.create_draft(draft_request(), folio=501, actor="ana")
        assert doc.totals.net == 150000
        assert doc.totals.exempt == 10000
        assert doc.totals.tax == 28500
        assert doc.totals.total == 188500

        sent = service.submit(doc.id, actor="ana")
        gateway.responses[sent.tracking_reference] = AuthorityResponse.from_sii_code(
            "SOK", "Documento Recibido por el SII. Datos Cuadran."
        )
        accepted = service.poll_status(doc.id)
        assert accepted.state is DocumentState.ACEPTADO

        rendered = service.render_artifacts(doc.id)
        assert rendered.pdf_ref.endswith("33_501.pdf")

        message_id = SendDocumentByEmailUseCase(
            repository=repository,
            renderer=renderer,
            notifier=notifier,
            config=EmailConfig(sender="facturacion@andinos.cl"),
        ).execute(doc.id)
        assert message_id == "msg-1"
        assert notifier.sent[0]["recipients"] == ["pagos@dsur.cl"]
        # el PDF ya existía: no se vuelve a generar
        assert renderer.calls.count((doc.id, "pdf")) == 1

        stored = repository.get(doc.id)
        assert [e.state for e in stored.history] == [
            DocumentState.PENDIENTE,
            DocumentState.ENVIADO,
            DocumentState.ACEPTADO,
        ]
        assert stored.state is stored.projected_state

    def test_survives_repository_reopen(self, tmp_path, gateway):
        db = str(tmp_path / "persist.db")
        repo = SqliteDocumentRepository(db_path=db)
        svc = DocumentLifecycleService(repository=repo, gateway=gateway)
        doc = svc.create_draft(draft_request(), folio=7)
        svc.submit(doc.id)
        repo.close()

        reopened = SqliteDocumentRepository(db_path=db)
        try:
            stored = reopened.get(doc.id)
            assert stored.state is DocumentState.ENVIADO
            assert stored.tracking_reference == "TRK-0001"
            assert stored.totals == doc.totals
        finally:
            reopened.close()


class TestRejectionAndRetry:
    def test_reject_then_resubmit_keeps_reference_history(self, service, gateway):
        doc = service.create_draft(draft_request(), folio=502)
        first = service.submit(doc.id)
        gateway.responses[first.tracking_reference] = AuthorityResponse.from_sii_code(
            "RCH", "Rut receptor no autorizado"
        )
        rejected = service.poll_status(doc.id)
        assert rejected.state is DocumentState.RECHAZADO
        assert rejected.authority_status_message == "Rut receptor no autorizado"

        second = service.submit(doc.id)
        assert second.state is DocumentState.ENVIADO
        assert second.tracking_references == ["TRK-0001", "TRK-0002"]
        assert second.authority_status_message is None

    def test_gateway_failure_then_retry(self, service, gateway):
        gateway.submit_errors.append(GatewayError("SII no disponible"))
        doc = service.create_draft(draft_request(), folio=503)
        failed = service.submit(doc.id)
        assert failed.state is DocumentState.ERROR
        assert failed.last_error == "SII no disponible"

        retried = service.submit(doc.id)
        assert retried.state is DocumentState.ENVIADO
        assert retried.last_error is None

    def test_timeout_resolves_to_error(self, repository, gateway):
        gateway.submit_delay = 0.3
        timed = TimeoutSubmissionGateway(gateway, submit_timeout=0.05, poll_timeout=1)
        svc = DocumentLifecycleService(repository=repository, gateway=timed)
        try:
            doc = svc.create_draft(draft_request(), folio=504)
            failed = svc.submit(doc.id)
            assert failed.state is DocumentState.ERROR
            assert "Timeout" in failed.last_error
        finally:
            timed.shutdown()

    def test_late_tracking_reference_is_persisted_and_not_resent(self, repository):
        gateway = FakeGateway(submit_delay=0.3)
        timed = TimeoutSubmissionGateway(gateway, submit_timeout=0.05, poll_timeout=1)
        svc = DocumentLifecycleService(repository=repository, gateway=timed)
        try:
            doc = svc.create_draft(draft_request(), folio=900)
            assert svc.submit(doc.id).state is DocumentState.ERROR

            # El primer envío sigue en curso: el reintento no llega al SII
            refused = svc.submit(doc.id)
            assert refused.state is DocumentState.ERROR
            assert "sigue sin respuesta" in refused.last_error

            _wait_until_settled(timed, doc.id)
            stored = svc.get(doc.id)
            assert stored.state is DocumentState.ENVIADO
            assert stored.tracking_reference == "TRK-0001"
            assert stored.tracking_references == ["TRK-0001"]
            assert gateway.submitted == [(doc.id, "TRK-0001")]

            with pytest.raises(InvalidTransition):
                svc.submit(doc.id)

            gateway.responses["TRK-0001"] = AuthorityResponse.from_sii_code("SOK")
            assert svc.poll_status(doc.id).state is DocumentState.ACEPTADO
        finally:
            timed.shutdown()


class TestConcurrency:
    def test_concurrent_submits_issue_one_tracking_reference(self, repository):
        gateway = FakeGateway(submit_delay=0.05)
        svc = DocumentLifecycleService(repository=repository, gateway=gateway)
        doc = svc.create_draft(draft_request(), folio=600)

        barrier = threading.Barrier(4)
        outcomes = []

        def _submit():
            barrier.wait()
            try:
                outcomes.append(svc.submit(doc.id).state)
            except InvalidTransition:
                outcomes.append("rejected")

        threads = [threading.Thread(target=_submit) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count(DocumentState.ENVIADO) == 1
        assert outcomes.count("rejected") == 3
        assert len(gateway.submitted) == 1
        assert len(repository.get(doc.id).tracking_references) == 1


class TestAdministrative:
    def test_delete_draft_then_folio_stays_taken(self, service):
        doc = service.create_draft(draft_request(), folio=700)
        service.delete(doc.id)
        with pytest.raises(DocumentNotFoundError):
            service.get(doc.id)
        with pytest.raises(ConflictError):
            service.create_draft(draft_request(), folio=700)

    def test_void_accepted(self, service, gateway):
        doc = service.create_draft(draft_request(), folio=701)
        sent = service.submit(doc.id)
        gateway.responses[sent.tracking_reference] = AuthorityResponse.from_sii_code("SOK")
        service.poll_status(doc.id)
        voided = service.void(doc.id, reason="Emitida por error")
        assert voided.state is DocumentState.ANULADO
        with pytest.raises(InvalidTransition):
            service.void(doc.id)

    def test_edit_draft_updates_totals(self, service, repository):
        doc = service.create_draft(draft_request(), folio=702)
        items = [LineItem(description="Ajuste", quantity=3, unit_price=1000, discount_pct=50)]
        service.edit_draft(doc.id, draft_request(items=items))
        stored = repository.get(doc.id)
        assert stored.totals.net == 1500
        assert stored.totals.total == 1785


class TestStatusSync:
    def test_sync_processes_all_sent_documents(self, service, repository, gateway):
        ids = []
        for folio in (801, 802, 803):
            doc = service.create_draft(draft_request(), folio=folio)
            ids.append(service.submit(doc.id).tracking_reference)
        gateway.responses[ids[0]] = AuthorityResponse.from_sii_code("SOK")
        gateway.responses[ids[1]] = AuthorityResponse.from_sii_code("EPR")
        # ids[2] sin respuesta: el gateway falla para ese track

        report = SyncAuthorityStatusUseCase(repository=repository, lifecycle=service).execute()

        assert report.status == "PARTIAL"
        assert report.polled == 3
        assert report.accepted == 1
        assert report.still_pending == 1
        assert len(report.errors) == 1
        stats = service.get_statistics()
        assert (stats.aceptados, stats.enviados) == (1, 2)
