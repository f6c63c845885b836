"""
Episode Stamper - batch label stamping for image sequences
Sorts images in natural filename order, stamps a sequential label on
letterboxed renditions of each, and exports the results as a ZIP
"""

import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from .config import AppConfig, RunConfig, load_config
from .session import StampSession

__version__ = "0.3.0"


def create_session(config: Optional[AppConfig] = None, config_path: Optional[str] = None) -> StampSession:
    """Session factory: loads configuration, sets up logging"""

    config = config or load_config(config_path)
    setup_logging(config.LOG_LEVEL, config.LOG_FILE)

    session = StampSession(config.run)
    logger.info(f"Stamp session created ({len(config.run.output_specs)} output specs)")
    return session


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None):
    """Configure loguru logging"""
    logger.remove()
    logger.add(sys.stderr, level=log_level,
               format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}")

    if log_file:
        # Ensure logs directory exists
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)

        logger.add(
            log_file,
            rotation="1 day",
            retention="30 days",
            level=log_level,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {name}:{function}:{line} | {message}"
        )


__all__ = ["AppConfig", "RunConfig", "StampSession", "create_session", "load_config", "setup_logging"]
