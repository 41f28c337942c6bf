"""Repositorio de documentos tributarios sobre SQLite."""

from __future__ import annotations

import json
import sqlite3
import threading
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

import structlog

from dte_engine.domain.entities import (
    AdditionalTax,
    DocumentState,
    DocumentTotals,
    DocumentType,
    HistoryEvent,
    LineItem,
    TaxDocument,
)
from dte_engine.domain.exceptions import ConflictError, DocumentNotFoundError, InvalidTransition
from dte_engine.domain.value_objects import Party, TaxId

logger = structlog.get_logger()

_SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    id                        TEXT PRIMARY KEY,
    document_type             TEXT NOT NULL,
    folio                     INTEGER NOT NULL,
    state                     TEXT NOT NULL,
    issuer_rut                TEXT NOT NULL,
    issuer_name               TEXT,
    issuer_activity           TEXT,
    issuer_email              TEXT,
    recipient_rut             TEXT NOT NULL,
    recipient_name            TEXT,
    recipient_activity        TEXT,
    recipient_email           TEXT,
    issue_date                TEXT NOT NULL,
    due_date                  TEXT,
    net_amount                INTEGER NOT NULL,
    exempt_amount             INTEGER NOT NULL,
    tax_amount                INTEGER NOT NULL,
    total_amount              INTEGER NOT NULL,
    additional_tax_amount     INTEGER NOT NULL DEFAULT 0,
    tracking_reference        TEXT,
    authority_status_message  TEXT,
    last_error                TEXT,
    xml_ref                   TEXT,
    pdf_ref                   TEXT,
    created_at                TEXT,
    updated_at                TEXT,
    deleted_at                TEXT,
    UNIQUE (document_type, folio)
);

CREATE TABLE IF NOT EXISTS line_items (
    document_id       TEXT NOT NULL REFERENCES documents(id),
    position          INTEGER NOT NULL,
    description       TEXT NOT NULL,
    code              TEXT,
    quantity          TEXT NOT NULL,
    unit_price        TEXT NOT NULL,
    discount_pct      TEXT NOT NULL,
    exempt            INTEGER NOT NULL,
    additional_taxes  TEXT,
    PRIMARY KEY (document_id, position)
);

CREATE TABLE IF NOT EXISTS history_events (
    document_id         TEXT NOT NULL REFERENCES documents(id),
    seq                 INTEGER NOT NULL,
    timestamp           TEXT NOT NULL,
    state               TEXT NOT NULL,
    detail              TEXT,
    actor               TEXT,
    tracking_reference  TEXT,
    PRIMARY KEY (document_id, seq)
);

CREATE INDEX IF NOT EXISTS idx_documents_state ON documents(state);
CREATE INDEX IF NOT EXISTS idx_history_document ON history_events(document_id);
"""

_DOCUMENT_COLUMNS = (
    "id, document_type, folio, state, issuer_rut, issuer_name, issuer_activity, issuer_email, "
    "recipient_rut, recipient_name, recipient_activity, recipient_email, issue_date, due_date, "
    "net_amount, exempt_amount, tax_amount, total_amount, additional_tax_amount, "
    "tracking_reference, authority_status_message, last_error, xml_ref, pdf_ref, "
    "created_at, updated_at"
)

# Estados en los que la fila puede marcarse como eliminada.
_DELETABLE_STATES = (DocumentState.PENDIENTE.value, DocumentState.ELIMINADO.value)


class SqliteDocumentRepository:
    """Persiste documentos, ítems e historial. El historial se escribe solo por append."""

    def __init__(self, db_path: str) -> None:
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        if db_path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._conn.executescript(_SCHEMA)
        self._conn.commit()
        logger.info("sqlite_repository_initialized", db_path=db_path)

    # ── Escritura ─────────────────────────────────────────────────

    def save(self, document: TaxDocument) -> None:
        with self._lock:
            try:
                self._save(document)
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise
        logger.debug(
            "document_saved",
            document_id=document.id,
            state=document.state.value,
            history=len(document.history),
        )

    def _save(self, document: TaxDocument) -> None:
        owner = self._conn.execute(
            "SELECT id FROM documents WHERE document_type=? AND folio=?",
            (document.document_type.value, document.folio),
        ).fetchone()
        if owner and owner["id"] != document.id:
            raise ConflictError(document.document_type, document.folio)

        stored = self._conn.execute(
            "SELECT document_type, folio, deleted_at FROM documents WHERE id=?", (document.id,)
        ).fetchone()

        values = self._document_values(document)
        if stored is None:
            placeholders = ", ".join("?" for _ in values)
            try:
                self._conn.execute(
                    f"INSERT INTO documents ({_DOCUMENT_COLUMNS}) VALUES ({placeholders})",
                    values,
                )
            except sqlite3.IntegrityError as e:
                raise ConflictError(document.document_type, document.folio) from e
        else:
            if stored["deleted_at"] is not None:
                raise DocumentNotFoundError(document.id)
            if (stored["document_type"], stored["folio"]) != document.key:
                raise ValueError(
                    f"Documento {document.id}: tipo y folio son inmutables "
                    f"({stored['document_type']}/{stored['folio']})"
                )
            assignments = ", ".join(
                f"{col.strip()}=?" for col in _DOCUMENT_COLUMNS.split(",")[1:]
            )
            self._conn.execute(
                f"UPDATE documents SET {assignments} WHERE id=?",
                (*values[1:], document.id),
            )

        self._replace_items(document)
        self._append_history(document)

    def _replace_items(self, document: TaxDocument) -> None:
        self._conn.execute("DELETE FROM line_items WHERE document_id=?", (document.id,))
        self._conn.executemany(
            """INSERT INTO line_items
               (document_id, position, description, code, quantity, unit_price,
                discount_pct, exempt, additional_taxes)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            [
                (
                    document.id,
                    position,
                    item.description,
                    item.code,
                    str(item.quantity),
                    str(item.unit_price),
                    str(item.discount_pct),
                    1 if item.exempt else 0,
                    json.dumps(
                        [
                            {
                                "code": t.code,
                                "name": t.name,
                                "rate": str(t.rate),
                                "amount": str(t.amount),
                            }
                            for t in item.additional_taxes
                        ],
                        ensure_ascii=False,
                    ),
                )
                for position, item in enumerate(document.items)
            ],
        )

    def _append_history(self, document: TaxDocument) -> None:
        stored = self._conn.execute(
            "SELECT COUNT(*) AS n FROM history_events WHERE document_id=?", (document.id,)
        ).fetchone()["n"]
        if len(document.history) < stored:
            raise ValueError(
                f"Documento {document.id}: el historial es append-only "
                f"(guardado {stored} eventos, recibido {len(document.history)})"
            )
        self._conn.executemany(
            """INSERT INTO history_events
               (document_id, seq, timestamp, state, detail, actor, tracking_reference)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            [
                (
                    document.id,
                    seq,
                    event.timestamp.isoformat(),
                    event.state.value,
                    event.detail,
                    event.actor,
                    event.tracking_reference,
                )
                for seq, event in enumerate(document.history)
                if seq >= stored
            ],
        )

    def delete(self, document_id: str) -> None:
        """Soft delete: la fila conserva el folio y el historial."""
        with self._lock:
            row = self._conn.execute(
                "SELECT state, deleted_at FROM documents WHERE id=?", (document_id,)
            ).fetchone()
            if row is None or row["deleted_at"] is not None:
                raise DocumentNotFoundError(document_id)
            if row["state"] not in _DELETABLE_STATES:
                raise InvalidTransition(
                    document_id,
                    DocumentState(row["state"]),
                    "delete",
                    "solo se eliminan borradores",
                )
            self._conn.execute(
                "UPDATE documents SET deleted_at=? WHERE id=?",
                (datetime.now(UTC).isoformat(), document_id),
            )
            self._conn.commit()
        logger.info("document_soft_deleted", document_id=document_id)

    # ── Lectura ───────────────────────────────────────────────────

    def get(self, document_id: str) -> TaxDocument:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE id=? AND deleted_at IS NULL",
                (document_id,),
            ).fetchone()
            if row is None:
                raise DocumentNotFoundError(document_id)
            return self._hydrate(row)

    def find_by_folio(self, document_type: DocumentType, folio: int) -> TaxDocument | None:
        with self._lock:
            row = self._conn.execute(
                f"""SELECT {_DOCUMENT_COLUMNS} FROM documents
                    WHERE document_type=? AND folio=? AND deleted_at IS NULL""",
                (document_type.value, folio),
            ).fetchone()
            return self._hydrate(row) if row else None

    def list_by_state(self, state: DocumentState) -> list[TaxDocument]:
        with self._lock:
            rows = self._conn.execute(
                f"""SELECT {_DOCUMENT_COLUMNS} FROM documents
                    WHERE state=? AND deleted_at IS NULL
                    ORDER BY document_type, folio""",
                (state.value,),
            ).fetchall()
            return [self._hydrate(row) for row in rows]

    def list_all(self) -> list[TaxDocument]:
        with self._lock:
            rows = self._conn.execute(
                f"""SELECT {_DOCUMENT_COLUMNS} FROM documents
                    WHERE deleted_at IS NULL
                    ORDER BY issue_date, document_type, folio"""
            ).fetchall()
            return [self._hydrate(row) for row in rows]

    def count_by_state(self) -> dict[DocumentState, int]:
        with self._lock:
            rows = self._conn.execute(
                """SELECT state, COUNT(*) AS n FROM documents
                   WHERE deleted_at IS NULL GROUP BY state"""
            ).fetchall()
        return {DocumentState(row["state"]): row["n"] for row in rows}

    def get_history(self, document_id: str) -> list[HistoryEvent]:
        """Historial completo, incluso de documentos eliminados."""
        with self._lock:
            return self._load_history(document_id)

    def close(self) -> None:
        """Cierra la conexión a la base de datos."""
        self._conn.close()

    # ── Mapeo ─────────────────────────────────────────────────────

    @staticmethod
    def _document_values(document: TaxDocument) -> tuple[Any, ...]:
        return (
            document.id,
            document.document_type.value,
            document.folio,
            document.state.value,
            document.issuer.tax_id.compact,
            document.issuer.business_name,
            document.issuer.activity,
            document.issuer.email,
            document.recipient.tax_id.compact,
            document.recipient.business_name,
            document.recipient.activity,
            document.recipient.email,
            document.issue_date.isoformat(),
            document.due_date.isoformat() if document.due_date else None,
            document.totals.net,
            document.totals.exempt,
            document.totals.tax,
            document.totals.total,
            document.totals.additional_tax,
            document.tracking_reference,
            document.authority_status_message,
            document.last_error,
            document.xml_ref,
            document.pdf_ref,
            document.created_at.isoformat() if document.created_at else None,
            document.updated_at.isoformat() if document.updated_at else None,
        )

    def _hydrate(self, row: sqlite3.Row) -> TaxDocument:
        document_id = row["id"]
        return TaxDocument(
            id=document_id,
            document_type=DocumentType(row["document_type"]),
            folio=row["folio"],
            issuer=Party(
                tax_id=TaxId.parse(row["issuer_rut"]),
                business_name=row["issuer_name"] or "",
                activity=row["issuer_activity"] or "",
                email=row["issuer_email"],
            ),
            recipient=Party(
                tax_id=TaxId.parse(row["recipient_rut"]),
                business_name=row["recipient_name"] or "",
                activity=row["recipient_activity"] or "",
                email=row["recipient_email"],
            ),
            issue_date=date.fromisoformat(row["issue_date"]),
            due_date=date.fromisoformat(row["due_date"]) if row["due_date"] else None,
            items=self._load_items(document_id),
            totals=DocumentTotals(
                net=row["net_amount"],
                exempt=row["exempt_amount"],
                tax=row["tax_amount"],
                total=row["total_amount"],
                additional_tax=row["additional_tax_amount"],
            ),
            state=DocumentState(row["state"]),
            history=tuple(self._load_history(document_id)),
            tracking_reference=row["tracking_reference"],
            authority_status_message=row["authority_status_message"],
            last_error=row["last_error"],
            xml_ref=row["xml_ref"],
            pdf_ref=row["pdf_ref"],
            created_at=_parse_dt(row["created_at"]),
            updated_at=_parse_dt(row["updated_at"]),
        )

    def _load_items(self, document_id: str) -> tuple[LineItem, ...]:
        rows = self._conn.execute(
            """SELECT description, code, quantity, unit_price, discount_pct, exempt,
                      additional_taxes
               FROM line_items WHERE document_id=? ORDER BY position""",
            (document_id,),
        ).fetchall()
        return tuple(
            LineItem(
                description=row["description"],
                code=row["code"] or "",
                quantity=Decimal(row["quantity"]),
                unit_price=Decimal(row["unit_price"]),
                discount_pct=Decimal(row["discount_pct"]),
                exempt=bool(row["exempt"]),
                additional_taxes=tuple(
                    AdditionalTax(
                        code=t["code"],
                        name=t.get("name", ""),
                        rate=Decimal(t["rate"]),
                        amount=Decimal(t["amount"]),
                    )
                    for t in json.loads(row["additional_taxes"] or "[]")
                ),
            )
            for row in rows
        )

    def _load_history(self, document_id: str) -> list[HistoryEvent]:
        rows = self._conn.execute(
            """SELECT timestamp, state, detail, actor, tracking_reference
               FROM history_events WHERE document_id=? ORDER BY seq""",
            (document_id,),
        ).fetchall()
        return [
            HistoryEvent(
                timestamp=datetime.fromisoformat(row["timestamp"]),
                state=DocumentState(row["state"]),
                detail=row["detail"],
                actor=row["actor"],
                tracking_reference=row["tracking_reference"],
            )
            for row in rows
        ]


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None
