from pathlib import Path
from typing import Literal, Protocol

from dte_engine.domain.entities import TaxDocument

ArtifactFormat = Literal["xml", "pdf"]


class ArtifactRenderer(Protocol):
    def render(self, document: TaxDocument, fmt: ArtifactFormat) -> Path:
        """Genera la representación XML/PDF y retorna la ruta del archivo."""
        ...
