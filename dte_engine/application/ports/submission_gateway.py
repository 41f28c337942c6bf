from typing import Protocol

from dte_engine.application.dtos import AuthorityResponse
from dte_engine.domain.entities import TaxDocument


class SubmissionGateway(Protocol):
    def submit(self, document: TaxDocument) -> str:
        """Envía el documento al SII. Retorna el track id o lanza GatewayError."""
        ...

    def poll_status(self, tracking_reference: str) -> AuthorityResponse: ...
