import logging

from config import settings

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger("trip_ledger")


def get_logger(name: str) -> logging.Logger:
    """Child logger of the application logger."""
    return logger.getChild(name)
