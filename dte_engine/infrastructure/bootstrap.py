"""Arma los adaptadores y casos de uso a partir de la configuración."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import structlog

from dte_engine.application.config import AppConfig
from dte_engine.application.ports.artifact_renderer import ArtifactRenderer
from dte_engine.application.ports.notifier import Notifier
from dte_engine.application.ports.submission_gateway import SubmissionGateway
from dte_engine.application.use_cases.document_lifecycle import DocumentLifecycleService
from dte_engine.application.use_cases.send_document_email import SendDocumentByEmailUseCase
from dte_engine.application.use_cases.sync_authority_status import SyncAuthorityStatusUseCase
from dte_engine.infrastructure.gmail_notifier import GmailNotifier
from dte_engine.infrastructure.sqlite_repository import SqliteDocumentRepository
from dte_engine.infrastructure.timeout_gateway import TimeoutSubmissionGateway

logger = structlog.get_logger()


@dataclass(frozen=True)
class DteEngine:
    repository: SqliteDocumentRepository
    gateway: TimeoutSubmissionGateway
    lifecycle: DocumentLifecycleService
    status_sync: SyncAuthorityStatusUseCase
    email: Optional[SendDocumentByEmailUseCase] = None

    def close(self) -> None:
        # Primero el gateway: los envíos en curso alcanzan a guardar su track id.
        self.gateway.shutdown(wait=True)
        self.repository.close()


def build_engine(
    config: AppConfig,
    sii_client: SubmissionGateway,
    renderer: Optional[ArtifactRenderer] = None,
    notifier: Optional[Notifier] = None,
) -> DteEngine:
    """Construye el motor sobre el cliente SII que entrega la aplicación.

    El envío por correo solo se arma si hay sección ``email`` y un renderer.
    """
    repository = SqliteDocumentRepository(db_path=config.repository.db_path)
    gateway = TimeoutSubmissionGateway.from_config(sii_client, config.sii)
    lifecycle = DocumentLifecycleService(
        repository=repository, gateway=gateway, renderer=renderer
    )
    status_sync = SyncAuthorityStatusUseCase(repository=repository, lifecycle=lifecycle)

    email = None
    if config.email is not None and renderer is not None:
        if notifier is None:
            notifier = GmailNotifier.from_config(config.google, config.email)
        email = SendDocumentByEmailUseCase(
            repository=repository, renderer=renderer, notifier=notifier, config=config.email
        )

    logger.info(
        "dte_engine_ready",
        environment=config.sii.environment,
        db_path=config.repository.db_path,
        email_enabled=email is not None,
    )
    return DteEngine(
        repository=repository,
        gateway=gateway,
        lifecycle=lifecycle,
        status_sync=status_sync,
        email=email,
    )
