from pathlib import Path
from typing import IO

import structlog

LOG_FILE_NAME = "dte_engine.log"

# Un handle por archivo: los loggers cacheados siguen escribiendo en él al reconfigurar.
_open_log_files: dict[Path, IO[str]] = {}


def _log_file_for(log_dir: Path) -> IO[str]:
    path = (log_dir / LOG_FILE_NAME).resolve()
    handle = _open_log_files.get(path)
    if handle is None or handle.closed:
        handle = path.open("a", encoding="utf-8")
        _open_log_files[path] = handle
    return handle


def setup_logging(log_level: str = "INFO", log_dir: Path | None = None) -> None:
    level_map = {"DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40, "CRITICAL": 50}
    level = level_map.get(log_level.upper(), 20)

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if log_dir:
        # JSON por línea en archivo, para auditar track ids y transiciones
        log_dir.mkdir(parents=True, exist_ok=True)
        processors.append(structlog.processors.JSONRenderer(ensure_ascii=False))
        logger_factory = structlog.WriteLoggerFactory(file=_log_file_for(log_dir))
    else:
        processors.append(structlog.dev.ConsoleRenderer())
        logger_factory = structlog.PrintLoggerFactory()

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=logger_factory,
        cache_logger_on_first_use=True,
    )
