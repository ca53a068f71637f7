"""Loguru configuration shared by the API and the CLI.

Every line names the import job it was written for (``job=...``); code
working on a job binds it with ``logger.contextualize(import_job=...)``.
Lines outside a job show ``job=-``.
"""

import sys
from pathlib import Path

from loguru import logger

LOG_FILE_NAME = "academy-crm.log"
NO_JOB = "-"

_LOG_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {name}:{function}:{line} | job={extra[import_job]} | {message}"
)


def setup_logging(log_level: str = "INFO", log_dir: str | None = None, *, json_logs: bool = False) -> None:
    """Replace Loguru's sinks with the application's.

    Args:
        log_level: Minimum level, case-insensitive.
        log_dir: When set, also write ``academy-crm.log`` there, rotated
            daily and kept for a week.
        json_logs: Write stderr as JSON lines for log shippers.
    """
    level = log_level.upper()
    logger.remove()
    logger.configure(extra={"import_job": NO_JOB})

    if json_logs:
        logger.add(sys.stderr, level=level, serialize=True)
    else:
        logger.add(sys.stderr, level=level, format=_LOG_FORMAT)

    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        logger.add(log_path / LOG_FILE_NAME, level=level, format=_LOG_FORMAT, rotation="24h", retention="7 days")
