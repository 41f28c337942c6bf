from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from enum import Enum
from typing import Optional

from dte_engine.domain.entities import DocumentState, DocumentType, LineItem
from dte_engine.domain.value_objects import Party


@dataclass(frozen=True)
class DraftRequest:
    """Datos de entrada para crear o editar un borrador."""

    document_type: DocumentType
    issuer: Party
    recipient: Party
    issue_date: date
    items: tuple[LineItem, ...]
    due_date: Optional[date] = None


class AuthorityVerdict(Enum):
    ACCEPTED = "ACEPTADO"
    REJECTED = "RECHAZADO"
    PENDING = "PENDIENTE"
    ERROR = "ERROR"


# Códigos de estado de envío/documento informados por el SII
_SII_CODES = {
    "SOK": AuthorityVerdict.ACCEPTED,  # Aceptado
    "RPR": AuthorityVerdict.ACCEPTED,  # Reprocesado
    "00": AuthorityVerdict.ACCEPTED,
    "RCH": AuthorityVerdict.REJECTED,
    "REC": AuthorityVerdict.PENDING,  # Recibido
    "EPR": AuthorityVerdict.PENDING,  # En proceso
    "ERR": AuthorityVerdict.ERROR,
    "99": AuthorityVerdict.ERROR,
    "01": AuthorityVerdict.ERROR,  # No autorizado
    "NRE": AuthorityVerdict.ERROR,  # No recibido
}


@dataclass(frozen=True)
class AuthorityResponse:
    verdict: AuthorityVerdict
    glosa: str = ""
    raw_status: Optional[str] = None

    @classmethod
    def from_sii_code(cls, code: str, glosa: str = "") -> "AuthorityResponse":
        normalized = (code or "").strip().upper()
        verdict = _SII_CODES.get(normalized, AuthorityVerdict.PENDING)
        return cls(verdict=verdict, glosa=glosa, raw_status=normalized or None)

    @property
    def is_final(self) -> bool:
        return self.verdict is not AuthorityVerdict.PENDING


@dataclass
class SyncReport:
    run_id: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    status: str = "PENDING"  # SUCCESS | PARTIAL | ERROR | NO_DOCUMENTS

    polled: int = 0
    accepted: int = 0
    rejected: int = 0
    failed: int = 0
    still_pending: int = 0

    errors: list[dict] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return self.status not in ("SUCCESS", "NO_DOCUMENTS")

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "timestamp": self.timestamp.strftime("%Y-%m-%d %H:%M:%S UTC"),
            "status": self.status,
            "consultados": self.polled,
            "aceptados": self.accepted,
            "rechazados": self.rejected,
            "con_error": self.failed,
            "pendientes": self.still_pending,
            "errores": self.errors[:20],
        }


@dataclass(frozen=True)
class DocumentStatistics:
    pendientes: int = 0
    enviados: int = 0
    aceptados: int = 0
    rechazados: int = 0
    error: int = 0
    anulados: int = 0

    @property
    def total(self) -> int:
        return (
            self.pendientes
            + self.enviados
            + self.aceptados
            + self.rechazados
            + self.error
            + self.anulados
        )

    @classmethod
    def from_counts(cls, counts: dict[DocumentState, int]) -> "DocumentStatistics":
        return cls(
            pendientes=counts.get(DocumentState.PENDIENTE, 0),
            enviados=counts.get(DocumentState.ENVIADO, 0),
            aceptados=counts.get(DocumentState.ACEPTADO, 0),
            rechazados=counts.get(DocumentState.RECHAZADO, 0),
            error=counts.get(DocumentState.ERROR, 0),
            anulados=counts.get(DocumentState.ANULADO, 0),
        )
