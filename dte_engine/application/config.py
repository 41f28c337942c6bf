"""Configuración de la aplicación cargada desde YAML."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

SII_ENVIRONMENTS = ("certificacion", "produccion")


@dataclass(frozen=True)
class SiiConfig:
    environment: str = "certificacion"
    submit_timeout_seconds: float = 30.0
    poll_timeout_seconds: float = 15.0


@dataclass(frozen=True)
class RepositoryConfig:
    db_path: str = "data/dte.db"


@dataclass(frozen=True)
class GoogleConfig:
    credentials_path: str
    delegated_user: str


@dataclass(frozen=True)
class EmailConfig:
    sender: str
    cc: tuple[str, ...] = ()
    bcc: tuple[str, ...] = ()
    subject_prefix: str = "[DTE]"
    templates_dir: str = "dte_engine/templates"
    templates: dict[str, str] = field(
        default_factory=lambda: {"accepted": "documento_aceptado.html"}
    )


@dataclass(frozen=True)
class ReportsConfig:
    output_dir: str = "reports"
    sheet_name: str = "Libro Ventas"


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    log_to_file: bool = False
    log_dir: str = "logs"


@dataclass(frozen=True)
class AppConfig:
    sii: SiiConfig
    repository: RepositoryConfig
    reports: ReportsConfig
    logging: LoggingConfig
    google: Optional[GoogleConfig] = None
    email: Optional[EmailConfig] = None


def load_config(config_path: str | Path) -> AppConfig:
    """Carga y valida la configuración desde un archivo YAML."""
    path = Path(config_path).resolve()
    if not path.exists():
        msg = f"Archivo de configuración no encontrado: {path}"
        raise FileNotFoundError(msg)

    with open(path, encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    if not isinstance(raw, dict):
        msg = f"YAML inválido: se esperaba dict, se obtuvo {type(raw).__name__}"
        raise ValueError(msg)

    _validate_required_keys(raw)

    return AppConfig(
        sii=_build_sii_config(raw.get("sii") or {}),
        repository=RepositoryConfig(**(raw.get("repository") or {})),
        reports=ReportsConfig(**(raw.get("reports") or {})),
        logging=LoggingConfig(**(raw.get("logging") or {})),
        google=_build_google_config(raw["google"] or {}) if "google" in raw else None,
        email=_build_email_config(raw["email"] or {}) if "email" in raw else None,
    )


def _validate_required_keys(raw: dict[str, Any]) -> None:
    """Valida que las secciones requeridas existan en el YAML."""
    required = {"sii", "repository"}
    missing = required - set(raw.keys())
    if missing:
        msg = f"Secciones requeridas faltantes en YAML: {sorted(missing)}"
        raise ValueError(msg)
    if "email" in raw and "google" not in raw:
        raise ValueError("email requiere la sección google (credenciales Gmail)")


def _build_sii_config(data: dict[str, Any]) -> SiiConfig:
    config = SiiConfig(**data)
    if config.environment not in SII_ENVIRONMENTS:
        msg = f"sii.environment inválido: '{config.environment}', use uno de {SII_ENVIRONMENTS}"
        raise ValueError(msg)
    if config.submit_timeout_seconds <= 0 or config.poll_timeout_seconds <= 0:
        raise ValueError("sii: los timeouts deben ser positivos")
    return config


def _build_google_config(data: dict[str, Any]) -> GoogleConfig:
    for key in ("credentials_path", "delegated_user"):
        if key not in data:
            msg = f"google.{key} es requerido"
            raise ValueError(msg)
    return GoogleConfig(**data)


def _build_email_config(data: dict[str, Any]) -> EmailConfig:
    """Construye EmailConfig, convirtiendo listas a tuplas para frozen dataclass."""
    data = dict(data)  # shallow copy
    if "sender" not in data:
        msg = "email.sender es requerido"
        raise ValueError(msg)
    for key in ("cc", "bcc"):
        if key in data:
            data[key] = tuple(data[key])
    return EmailConfig(**data)
