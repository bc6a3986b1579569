"""
Logging configuration for CareNest Access Backend
"""
import logging
import sys
from typing import Optional

from app.core.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: Optional[str] = None) -> None:
    """
    Configure Python logging based on settings

    Sets up:
    - Console handler on stdout
    - Root level from settings.LOG_LEVEL (or the explicit override)
    - Quieter third-party loggers (uvicorn access, sqlalchemy engine)
    """
    level_name = (level or settings.LOG_LEVEL).upper()
    log_level = getattr(logging, level_name, logging.INFO)

    logging.basicConfig(
        level=log_level,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )

    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    # Grant/revoke decisions are always worth keeping, even when the root level is WARNING
    logging.getLogger("app.services.access_grant_service").setLevel(min(log_level, logging.INFO))

    logger = logging.getLogger(__name__)
    logger.info("Logging configured: level=%s, env=%s", level_name, settings.APP_ENV)
