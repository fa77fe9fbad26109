import logging
import sys


def configure_logging(level: str = "INFO") -> None:
    """Configures the root logger for the application."""
    numeric_level = getattr(logging, str(level).upper(), None)
    invalid = not isinstance(numeric_level, int)
    if invalid:
        numeric_level = logging.INFO

    # Format: "2026-03-02 07:00:00 [INFO] precastplan.scheduler.service: Reschedule run 3 committed 10 batches"
    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Remove existing handlers to avoid duplicates during reloads
    if root_logger.hasHandlers():
        root_logger.handlers.clear()

    root_logger.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("watchfiles").setLevel(logging.WARNING)

    if invalid:
        logging.getLogger(__name__).warning("Invalid log level %r, defaulting to INFO", level)
