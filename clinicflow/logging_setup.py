# clinicflow/logging_setup.py
import logging

from .config import LOG_LEVEL


class ThirdPartyFilter(logging.Filter):
    """Filter to suppress chatty third-party logs below WARNING."""
    def filter(self, record):
        if record.name.startswith(("sqlalchemy", "aiosqlite")) and record.levelno < logging.WARNING:
            return False
        return True


def setup_logging(level: str = None) -> logging.Logger:
    """Configure the `clinicflow` logger tree once and return its root."""
    logger = logging.getLogger("clinicflow")
    if logger.handlers:  # Prevent duplicate handlers
        return logger

    logger.setLevel(getattr(logging, (level or LOG_LEVEL), logging.INFO))

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s - %(levelname)s - %(name)s - %(message)s"))
    handler.addFilter(ThirdPartyFilter())
    logger.addHandler(handler)
    logger.propagate = False
    return logger
