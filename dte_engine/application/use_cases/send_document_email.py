"""Envía por correo el PDF de un documento aceptado por el SII."""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import structlog

from dte_engine.application.config import EmailConfig
from dte_engine.application.ports.artifact_renderer import ArtifactRenderer
from dte_engine.application.ports.document_repository import DocumentRepository
from dte_engine.application.ports.notifier import Notifier
from dte_engine.domain.entities import DocumentState, TaxDocument
from dte_engine.domain.exceptions import InvalidTransition

logger = structlog.get_logger()


@dataclass(frozen=True)
class SendDocumentByEmailUseCase:
    repository: DocumentRepository
    renderer: ArtifactRenderer
    notifier: Notifier
    config: EmailConfig

    def execute(self, document_id: str, email: Optional[str] = None) -> str:
        document = self.repository.get(document_id)
        if document.state is not DocumentState.ACEPTADO:
            raise InvalidTransition(
                document_id, document.state, "send_email", "solo se envían documentos aceptados"
            )

        recipient = email or document.recipient.email
        if not recipient:
            raise ValueError(f"Documento {document_id}: el receptor no tiene email registrado")

        pdf_path = Path(document.pdf_ref) if document.pdf_ref else None
        if pdf_path is None or not pdf_path.exists():
            pdf_path = self.renderer.render(document, "pdf")

        subject = (
            f"{self.config.subject_prefix} {document.document_type.label} "
            f"N° {document.folio}"
        )
        template_name = self.config.templates.get("accepted", "documento_aceptado.html")
        message_id = self.notifier.send(
            subject=subject,
            template_name=template_name,
            template_vars=self._template_vars(document),
            recipients=[recipient],
            cc=list(self.config.cc) or None,
            bcc=list(self.config.bcc) or None,
            attachments=[pdf_path],
        )
        logger.info(
            "document_emailed",
            document_id=document_id,
            folio=document.folio,
            recipient=recipient,
            message_id=message_id,
        )
        return message_id

    @staticmethod
    def _template_vars(document: TaxDocument) -> dict:
        return {
            "tipo_documento": document.document_type.label,
            "folio": document.folio,
            "fecha_emision": document.issue_date.strftime("%d-%m-%Y"),
            "razon_social_emisor": document.issuer.business_name,
            "rut_emisor": document.issuer.tax_id.formatted(),
            "razon_social_receptor": document.recipient.business_name,
            "rut_receptor": document.recipient.tax_id.formatted(),
            "monto_neto": f"${document.totals.net:,.0f}".replace(",", "."),
            "monto_iva": f"${document.totals.tax:,.0f}".replace(",", "."),
            "monto_exento": f"${document.totals.exempt:,.0f}".replace(",", "."),
            "monto_total": f"${document.totals.total:,.0f}".replace(",", "."),
            "track_id": document.tracking_reference or "",
        }
