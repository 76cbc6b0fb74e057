"""Logging configuration for the sync backend."""
import logging
import sys
from typing import Optional
from hapticsync.core.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: Optional[str] = None) -> None:
    """
    Configure application logging.

    Args:
        level: Log level name (defaults to config value)
    """
    level_name = (level or settings.log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )
    # One range request per segment; connection chatter is noise
    logging.getLogger("urllib3").setLevel(logging.WARNING)


logger = logging.getLogger("hapticsync")
