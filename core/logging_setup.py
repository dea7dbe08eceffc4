"""Root logger wiring for CLI runs: a rotating log file plus optional stdout."""
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional

LOG_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s'
LOG_DATEFMT = '%Y-%m-%d %H:%M:%S'
LOG_MAX_BYTES = 5 * 1024 * 1024
LOG_BACKUPS = 3


def _resolve_level(log_level: str) -> int:
    return getattr(logging, str(log_level).upper(), logging.INFO)


def _rotating_file_handler(log_file: Path, formatter: logging.Formatter) -> logging.Handler:
    # The file is only opened on first write.
    handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=LOG_MAX_BYTES,
        backupCount=LOG_BACKUPS,
        encoding='utf-8',
        delay=True,
    )
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(formatter)
    return handler


def _stdout_handler(level: int, formatter: logging.Formatter) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def teardown_logging(logger: Optional[logging.Logger] = None) -> None:
    """Detach every handler from ``logger`` (the root logger by default) and close it."""
    target = logger if logger is not None else logging.getLogger()
    while target.handlers:
        handler = target.handlers[0]
        target.removeHandler(handler)
        try:
            handler.flush()
            handler.close()
        except (OSError, ValueError):
            # Stream already closed by its owner.
            pass


def setup_logging(
    log_level: str = 'INFO',
    logs_dir: Optional[Path] = None,
    console_output: bool = True,
    log_filename: str = 'whatif.log',
) -> logging.Logger:
    """
    Configure the root logger for one simulation run.

    The log file always records DEBUG and above; the console follows
    ``log_level``. Calling this again replaces the previous handlers.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR
        logs_dir: Directory for the rotating log file; ``./logs`` when omitted
        console_output: Also log to stdout
        log_filename: File name inside ``logs_dir``
    """
    log_dir = Path(logs_dir) if logs_dir is not None else Path.cwd() / 'logs'
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / log_filename

    level = _resolve_level(log_level)
    root = logging.getLogger()
    teardown_logging(root)
    root.setLevel(level)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)
    root.addHandler(_rotating_file_handler(log_file, formatter))
    if console_output:
        root.addHandler(_stdout_handler(level, formatter))

    root.info("Logging initialized at %s level", log_level)
    root.debug("Log file: %s", log_file)
    return root
