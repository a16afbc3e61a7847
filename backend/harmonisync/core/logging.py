"""Logging configuration for the pitch tracking backend."""
import logging
import sys
from typing import Optional
from harmonisync.core.config import settings


def setup_logging(level: Optional[str] = None) -> None:
    """
    Configure application logging.

    Args:
        level: Log level name; defaults to the LOG_LEVEL setting
    """
    level_name = (level or settings.log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )
    # Quiet per-request access logs
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


logger = logging.getLogger("harmonisync")
