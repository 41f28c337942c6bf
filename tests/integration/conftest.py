"""Integration test fixtures: FakeGateway, FakeRenderer, FakeNotifier.

Real components: SqliteDocumentRepository, DocumentLifecycleService,
TimeoutSubmissionGateway, SalesRegisterExporter.
Faked components: SII gateway, artifact renderer, notifier (external boundary).
"""

from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any

import pytest

from dte_engine.application.dtos import AuthorityResponse, DraftRequest
from dte_engine.application.use_cases.document_lifecycle import DocumentLifecycleService
from dte_engine.domain.entities import DocumentType, LineItem, TaxDocument
from dte_engine.domain.exceptions import GatewayError
from dte_engine.domain.value_objects import Party, TaxId
from dte_engine.infrastructure.sqlite_repository import SqliteDocumentRepository

# ── Parties ──────────────────────────────────────────────────────────

ISSUER = Party(
    tax_id=TaxId.parse("76.123.456-0"),
    business_name="Servicios Andinos SpA",
    activity="Asesorías",
)
RECIPIENT = Party(
    tax_id=TaxId.parse("11.111.112-K"),
    business_name="Distribuidora Sur Ltda",
    activity="Comercio",
    email="pagos@dsur.cl",
)


def draft_request(
    items: list[LineItem] | None = None,
    document_type: DocumentType = DocumentType.FACTURA,
    issue_date: date = date(2026, 3, 2),
) -> DraftRequest:
    return DraftRequest(
        document_type=document_type,
        issuer=ISSUER,
        recipient=RECIPIENT,
        issue_date=issue_date,
        items=tuple(
            items
            or [
                LineItem(description="Asesoría tributaria", quantity=1, unit_price=150000),
                LineItem(description="Despacho documentos", quantity=2, unit_price=5000, exempt=True),
            ]
        ),
    )


# ── Fakes ────────────────────────────────────────────────────────────


@dataclass
class FakeGateway:
    """SII en memoria: asigna track ids correlativos y responde lo que se le programe."""

    submit_errors: list[Exception] = field(default_factory=list)
    responses: dict[str, AuthorityResponse] = field(default_factory=dict)
    submit_delay: float = 0.0
    submitted: list[tuple[str, str]] = field(default_factory=list)
    _counter: Any = field(default_factory=lambda: itertools.count(1))
    _guard: threading.Lock = field(default_factory=threading.Lock)

    def submit(self, document: TaxDocument) -> str:
        if self.submit_delay:
            threading.Event().wait(self.submit_delay)
        with self._guard:
            if self.submit_errors:
                raise self.submit_errors.pop(0)
            reference = f"TRK-{next(self._counter):04d}"
            self.submitted.append((document.id, reference))
        return reference

    def poll_status(self, tracking_reference: str) -> AuthorityResponse:
        if tracking_reference not in self.responses:
            raise GatewayError(f"Track {tracking_reference} desconocido")
        return self.responses[tracking_reference]


@dataclass
class FakeRenderer:
    output_dir: Path
    calls: list[tuple[str, str]] = field(default_factory=list)

    def render(self, document: TaxDocument, fmt: str) -> Path:
        self.calls.append((document.id, fmt))
        path = self.output_dir / f"{document.document_type.value}_{document.folio}.{fmt}"
        path.write_bytes(b"%PDF-1.4 fake" if fmt == "pdf" else b"<DTE/>")
        return path


@dataclass
class FakeNotifier:
    sent: list[dict[str, Any]] = field(default_factory=list)

    def send(self, **kwargs: Any) -> str:
        self.sent.append(kwargs)
        return f"msg-{len(self.sent)}"


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture
def repository(tmp_path):
    repo = SqliteDocumentRepository(db_path=str(tmp_path / "data" / "dte.db"))
    yield repo
    repo.close()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def renderer(tmp_path):
    out = tmp_path / "artifacts"
    out.mkdir()
    return FakeRenderer(output_dir=out)


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def service(repository, gateway, renderer):
    return DocumentLifecycleService(repository=repository, gateway=gateway, renderer=renderer)
