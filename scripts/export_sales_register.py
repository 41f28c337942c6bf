"""Exporta el libro de ventas (documentos aceptados y anulados) a XLSX.

Usage:
    python scripts/export_sales_register.py [path/to/config.yaml]
"""

import sys
from datetime import datetime
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

import structlog

from dte_engine.application.config import load_config
from dte_engine.domain.entities import DocumentState
from dte_engine.infrastructure.excel_register import SalesRegisterExporter
from dte_engine.infrastructure.logging_config import setup_logging
from dte_engine.infrastructure.sqlite_repository import SqliteDocumentRepository

REGISTER_STATES = (DocumentState.ACEPTADO, DocumentState.ANULADO)


def main() -> int:
    config_path = sys.argv[1] if len(sys.argv) > 1 else "configs/configuration.yaml"
    config = load_config(config_path)

    setup_logging(
        log_level=config.logging.level,
        log_dir=Path(config.logging.log_dir) if config.logging.log_to_file else None,
    )
    logger = structlog.get_logger()
    logger.info("sales_register_starting", config_path=config_path)

    repository = SqliteDocumentRepository(db_path=config.repository.db_path)
    try:
        documents = [doc for state in REGISTER_STATES for doc in repository.list_by_state(state)]
        output = (
            Path(config.reports.output_dir)
            / f"libro_ventas_{datetime.now().strftime('%Y%m%d_%H%M%S')}.xlsx"
        )
        SalesRegisterExporter(sheet_name=config.reports.sheet_name).export(documents, output)
        logger.info("sales_register_finished", path=str(output), documents=len(documents))
        return 0
    finally:
        repository.close()


if __name__ == "__main__":
    sys.exit(main())
