# -*- coding: utf-8 -*-
"""
Centralized logging configuration for the multi-scale RAG core

Entry points (scripts, services embedding the pipeline) call setup_logging()
once; library modules only ever do ``logger = logging.getLogger(__name__)``.
Chatty third-party loggers (sentence-transformers, faiss loader, urllib3) are
capped at WARNING so chunking and retrieval progress stays readable.

Examples:
    # In a script
    from multiscale_rag.utils.logger import setup_logging
    setup_logging(log_file="logs/ingestion.log")

    # In any module
    import logging
    logger = logging.getLogger(__name__)
    logger.info("Chunked document doc_001 into 42 chunks")
"""
# Standard library
import logging
import sys
from pathlib import Path
from typing import Iterable, Optional

DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

NOISY_LOGGERS = (
    'sentence_transformers',
    'faiss.loader',
    'urllib3',
    'filelock',
)

# Global flag to prevent duplicate configuration
_logging_configured = False


def setup_logging(
    level: int = logging.INFO,
    log_file: Optional[str] = None,
    format_string: str = DEFAULT_FORMAT,
    quiet_loggers: Iterable[str] = NOISY_LOGGERS,
) -> None:
    """
    Configure logging for the application.

    Console output always goes to stdout; a log file is added when given.
    Repeated calls are no-ops.

    Args:
        level: Logging level (default: logging.INFO)
        log_file: Optional log file path, parent directories are created
        format_string: Log record format
        quiet_loggers: Logger names capped at WARNING
    """
    global _logging_configured

    if _logging_configured:
        return

    formatter = logging.Formatter(format_string)
    handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    logging.basicConfig(
        level=level,
        handlers=handlers,
        force=True
    )

    for name in quiet_loggers:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    _logging_configured = True


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
