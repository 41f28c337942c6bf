"""Fixtures compartidas: borradores de ejemplo y repositorio SQLite temporal."""

from __future__ import annotations

import itertools
from datetime import UTC, date, datetime, timedelta

import pytest

from dte_engine.application.dtos import DraftRequest
from dte_engine.domain.entities import DocumentType, LineItem
from dte_engine.domain.value_objects import Party, TaxId
from dte_engine.infrastructure.sqlite_repository import SqliteDocumentRepository

ISSUER = Party(
    tax_id=TaxId.parse("76.123.456-0"),
    business_name="Servicios Andinos SpA",
    activity="Asesorías",
    email="facturacion@andinos.cl",
)
RECIPIENT = Party(
    tax_id=TaxId.parse("12.345.678-5"),
    business_name="Comercial Pérez Ltda",
    activity="Comercio",
    email="pagos@perez.cl",
)


def make_request(items=None, **overrides) -> DraftRequest:
    data = {
        "document_type": DocumentType.FACTURA,
        "issuer": ISSUER,
        "recipient": RECIPIENT,
        "issue_date": date(2026, 3, 2),
        "items": tuple(
            items
            if items is not None
            else (LineItem(description="Asesoría mensual", quantity=2, unit_price=10000),)
        ),
    }
    data.update(overrides)
    return DraftRequest(**data)


class StepClock:
    """Reloj determinista: cada llamada avanza un segundo."""

    def __init__(self, start: datetime = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)) -> None:
        self._ticks = itertools.count()
        self._start = start

    def __call__(self) -> datetime:
        return self._start + timedelta(seconds=next(self._ticks))


@pytest.fixture
def repository(tmp_path):
    repo = SqliteDocumentRepository(db_path=str(tmp_path / "dte.db"))
    yield repo
    repo.close()
