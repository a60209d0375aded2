import logging
import logging.handlers
from pathlib import Path
from typing import Optional

LOGS_DIR = Path(__file__).parent.parent / "logs"
LOG_FILE_NAME = "rank_tracker.log"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Rotation: 5MB per file, keep 3 backups
MAX_LOG_BYTES = 5 * 1024 * 1024
LOG_BACKUP_COUNT = 3

_HANDLER_TAG = "_rank_tracker_handler"


def setup_logging(
    log_level: str = "INFO",
    log_dir: Optional[Path] = None,
    console: bool = True,
) -> Path:
    """Attach the rank tracker's file (and console) handlers to the root logger.

    Calling again is a no-op once our handlers are installed; handlers added
    by other tools are left alone.

    Returns:
        Path of the rotating log file.
    """
    log_dir = Path(log_dir) if log_dir else LOGS_DIR
    log_file = log_dir / LOG_FILE_NAME

    root_logger = logging.getLogger()
    if any(getattr(h, _HANDLER_TAG, False) for h in root_logger.handlers):
        return log_file

    log_dir.mkdir(parents=True, exist_ok=True)
    level = getattr(logging, log_level.upper(), logging.INFO)
    root_logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    handlers = [
        logging.handlers.RotatingFileHandler(
            log_file, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUP_COUNT, encoding="utf-8"
        )
    ]
    handlers[0].setLevel(logging.DEBUG)
    if console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        handlers.append(console_handler)

    for handler in handlers:
        handler.setFormatter(formatter)
        setattr(handler, _HANDLER_TAG, True)
        root_logger.addHandler(handler)

    logging.getLogger(__name__).info("Logging to %s (level=%s)", log_file, log_level)
    return log_file
