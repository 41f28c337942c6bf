"""Port para el envío de DTE por correo."""

from pathlib import Path
from typing import Any, Protocol


class Notifier(Protocol):
    def send(
        self,
        *,
        subject: str,
        template_name: str,
        template_vars: dict[str, Any],
        recipients: list[str],
        cc: list[str] | None = None,
        bcc: list[str] | None = None,
        attachments: list[Path] | None = None,
    ) -> str:
        """Envía un correo HTML con el documento adjunto. Retorna el id del mensaje."""
        ...
