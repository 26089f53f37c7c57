"""Shared logging utilities.

Batch jobs are usually started by a scheduler whose stdout may be closed or
piped into something that goes away mid-run. SafeStreamHandler keeps a job
alive when that happens instead of crashing inside the logging call.
"""
import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class SafeStreamHandler(logging.StreamHandler):
    """StreamHandler that ignores broken pipe and closed file errors."""

    def emit(self, record):
        try:
            super().emit(record)
        except BrokenPipeError:
            pass  # stdout closed
        except ValueError:
            pass  # I/O operation on closed file


def configure_safe_logging(level=logging.INFO):
    """Configure the root logger with a SafeStreamHandler.

    Safe to call multiple times; a second call does not add another handler.

    Args:
        level: Logging level to set (default: INFO)
    """
    logger = logging.getLogger()
    if not any(isinstance(h, SafeStreamHandler) for h in logger.handlers):
        handler = SafeStreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler.setLevel(level)
        logger.addHandler(handler)
        # openai lowers the root logger to WARNING on import
        if logger.level == logging.NOTSET or logger.level > level:
            logger.setLevel(level)

    # urllib3 logs every retry at DEBUG/WARNING; the clients log their own
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def log_summary(logger: logging.Logger, title: str, counts: dict) -> None:
    """Log a boxed block of counters at the end of a batch job."""
    logger.info("=" * 50)
    logger.info(title)
    logger.info("=" * 50)
    for name, value in counts.items():
        logger.info(f"  {name}: {value}")
    logger.info("=" * 50)
