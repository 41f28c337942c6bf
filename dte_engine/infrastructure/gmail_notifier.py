"""Envío de DTE al receptor via Gmail API, con cuerpo HTML desde template."""

from __future__ import annotations

import base64
import mimetypes
import re
from email import encoders
from email.header import Header
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from typing import Any

import structlog
from google.oauth2.service_account import Credentials
from googleapiclient.discovery import build

from dte_engine.application.config import EmailConfig, GoogleConfig

logger = structlog.get_logger()

GMAIL_SCOPES = ["https://www.googleapis.com/auth/gmail.send"]


class GmailNotifier:
    def __init__(self, service: Any, sender: str, templates_dir: Path) -> None:
        self._service = service
        self._sender = sender
        self._templates_dir = templates_dir

    @classmethod
    def from_config(cls, google: GoogleConfig, email: EmailConfig) -> GmailNotifier:
        """Construye el servicio Gmail con la cuenta de servicio delegada."""
        creds = Credentials.from_service_account_file(google.credentials_path, scopes=GMAIL_SCOPES)
        delegated = creds.with_subject(google.delegated_user)
        service = build("gmail", "v1", credentials=delegated, cache_discovery=False)
        return cls(service, email.sender, Path(email.templates_dir))

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
        """Envía el email y retorna el id de mensaje asignado por Gmail."""
        if not recipients:
            raise ValueError("Se requiere al menos un destinatario")
        html_body = self._render_template(template_name, template_vars)

        msg = MIMEMultipart("mixed")
        msg["From"] = self._sender
        msg["To"] = ", ".join(recipients)
        msg["Subject"] = Header(subject, "utf-8")
        if cc:
            msg["Cc"] = ", ".join(cc)
        if bcc:
            msg["Bcc"] = ", ".join(bcc)

        alternative = MIMEMultipart("alternative")
        alternative.attach(MIMEText(self._html_to_plain(html_body), "plain", "utf-8"))
        alternative.attach(MIMEText(html_body, "html", "utf-8"))
        msg.attach(alternative)

        for path in attachments or []:
            msg.attach(self._build_attachment(Path(path)))

        raw = base64.urlsafe_b64encode(msg.as_bytes()).decode("utf-8")
        result = self._service.users().messages().send(userId="me", body={"raw": raw}).execute()

        message_id = result.get("id", "unknown")
        logger.info(
            "gmail_sent",
            message_id=message_id,
            recipients=recipients,
            cc=cc,
            subject=subject,
            attachments=[Path(p).name for p in attachments or []],
        )
        return message_id

    @staticmethod
    def _build_attachment(path: Path) -> MIMEBase:
        # El PDF del DTE es obligatorio: no se envía un correo sin él
        if not path.exists():
            raise FileNotFoundError(f"Adjunto no encontrado: {path}")
        content_type, _ = mimetypes.guess_type(path.name)
        maintype, subtype = (content_type or "application/octet-stream").split("/", 1)
        part = MIMEBase(maintype, subtype)
        part.set_payload(path.read_bytes())
        encoders.encode_base64(part)
        part.add_header("Content-Disposition", "attachment", filename=path.name)
        return part

    def _render_template(self, template_name: str, variables: dict[str, Any]) -> str:
        """Sustituye solo placeholders ``{palabra}``; las llaves CSS quedan intactas."""
        template_path = self._templates_dir / template_name
        if not template_path.exists():
            msg = f"Template no encontrado: {template_path}"
            raise FileNotFoundError(msg)

        html = template_path.read_text(encoding="utf-8")

        def _replacer(match: re.Match[str]) -> str:
            key = match.group(1)
            if key in variables:
                return str(variables[key])
            return match.group(0)

        return re.sub(r"\{(\w+)\}", _replacer, html)

    @staticmethod
    def _html_to_plain(html: str) -> str:
        text = re.sub(r"<style[^>]*>.*?</style>", "", html, flags=re.DOTALL)
        text = re.sub(r"<br\s*/?>", "\n", text)
        text = re.sub(r"<[^>]+>", "", text)
        text = re.sub(r"[ \t]+\n", "\n", text)
        text = re.sub(r"\n{3,}", "\n\n", text)
        return text.strip()
