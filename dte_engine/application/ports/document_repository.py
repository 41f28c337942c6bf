"""Port de persistencia de documentos tributarios."""

from __future__ import annotations

from typing import Protocol

from dte_engine.domain.entities import DocumentState, DocumentType, TaxDocument


class DocumentRepository(Protocol):
    def get(self, document_id: str) -> TaxDocument:
        """Retorna el documento o lanza DocumentNotFoundError."""
        ...

    def save(self, document: TaxDocument) -> None:
        """Inserta o actualiza. Lanza ConflictError si (tipo, folio) ya pertenece a otro id."""
        ...

    def delete(self, document_id: str) -> None:
        """Elimina un borrador. Lanza InvalidTransition si el estado guardado lo impide."""
        ...

    def find_by_folio(self, document_type: DocumentType, folio: int) -> TaxDocument | None: ...

    def list_by_state(self, state: DocumentState) -> list[TaxDocument]: ...

    def list_all(self) -> list[TaxDocument]: ...

    def count_by_state(self) -> dict[DocumentState, int]: ...
