from dataclasses import FrozenInstanceError, replace
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal

import pytest

from dte_engine.domain.entities import (
    DocumentState,
    DocumentTotals,
    DocumentType,
    HistoryEvent,
    LineItem,
    TaxDocument,
)
from dte_engine.domain.exceptions import InvalidLineItem
from dte_engine.domain.value_objects import Party, TaxId

T0 = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


def _document(**overrides) -> TaxDocument:
    data = {
        "id": "doc-1",
        "document_type": DocumentType.FACTURA,
        "folio": 101,
        "issuer": Party(tax_id=TaxId.parse("76.123.456-0"), business_name="Emisor SpA"),
        "recipient": Party(tax_id=TaxId.parse("12.345.678-5"), business_name="Cliente"),
        "issue_date": date(2026, 3, 2),
        "items": (LineItem(description="Asesoría", quantity=1, unit_price=1000),),
        "totals": DocumentTotals(net=1000, tax=190, total=1190),
        "state": DocumentState.PENDIENTE,
        "history": (HistoryEvent(timestamp=T0, state=DocumentState.PENDIENTE),),
    }
    data.update(overrides)
    return TaxDocument(**data)


class TestDocumentType:
    def test_from_code_accepts_int(self):
        assert DocumentType.from_code(33) is DocumentType.FACTURA
        assert DocumentType.from_code(" 61 ") is DocumentType.NOTA_CREDITO

    def test_unknown_code_raises(self):
        with pytest.raises(ValueError, match="desconocido"):
            DocumentType.from_code("99")

    def test_labels(self):
        assert DocumentType.FACTURA_EXENTA.label == "Factura Exenta Electrónica"


class TestLineItem:
    def test_coerces_to_decimal(self):
        item = LineItem(description="x", quantity="1.5", unit_price=1000, discount_pct=10)
        assert item.quantity == Decimal("1.5")
        assert item.gross_amount == Decimal("1500")
        assert item.discount_amount == Decimal("150")
        assert item.subtotal == Decimal("1350")

    def test_is_immutable(self):
        item = LineItem(description="x", quantity=1, unit_price=1)
        with pytest.raises(FrozenInstanceError):
            item.quantity = Decimal("2")


class TestTaxDocument:
    def test_valid_document(self):
        doc = _document()
        assert doc.key == ("33", 101)
        assert doc.projected_state is DocumentState.PENDIENTE

    def test_requires_items(self):
        with pytest.raises(InvalidLineItem, match="al menos un ítem"):
            _document(items=())

    @pytest.mark.parametrize("folio", [0, -5])
    def test_requires_positive_folio(self, folio):
        with pytest.raises(ValueError, match="folio"):
            _document(folio=folio)

    def test_requires_id(self):
        with pytest.raises(ValueError, match="id"):
            _document(id="")

    def test_state_must_match_last_history_event(self):
        with pytest.raises(ValueError, match="no coincide"):
            _document(state=DocumentState.ENVIADO)

    def test_history_must_be_ordered(self):
        history = (
            HistoryEvent(timestamp=T0, state=DocumentState.PENDIENTE),
            HistoryEvent(timestamp=T0 - timedelta(seconds=1), state=DocumentState.PENDIENTE),
        )
        with pytest.raises(ValueError, match="orden"):
            _document(history=history)

    def test_tracking_references_lists_every_submission(self):
        history = (
            HistoryEvent(timestamp=T0, state=DocumentState.PENDIENTE),
            HistoryEvent(timestamp=T0, state=DocumentState.ENVIADO, tracking_reference="T1"),
            HistoryEvent(timestamp=T0, state=DocumentState.RECHAZADO),
            HistoryEvent(timestamp=T0, state=DocumentState.ENVIADO, tracking_reference="T2"),
        )
        doc = _document(state=DocumentState.ENVIADO, history=history, tracking_reference="T2")
        assert doc.tracking_references == ["T1", "T2"]

    def test_has_changes_vs(self):
        doc = _document()
        assert not doc.has_changes_vs(replace(doc))
        assert doc.has_changes_vs(replace(doc, due_date=date(2026, 4, 1)))
        other_items = (LineItem(description="Asesoría", quantity=2, unit_price=1000),)
        assert doc.has_changes_vs(replace(doc, items=other_items))


class TestDocumentState:
    def test_only_pendiente_is_editable(self):
        assert [s for s in DocumentState if s.is_editable] == [DocumentState.PENDIENTE]
