"""
Logging setup shared by the chat services and the MCP server.
"""

import logging
import sys
from typing import Optional

from .config import AppConfig

# Driver loggers that flood DEBUG output with wire-level detail
NOISY_LOGGERS = ('botocore', 'boto3', 'urllib3', 'opensearch', 'gremlinpython', 'aiohttp')

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _resolve_level(config: Optional[AppConfig]) -> int:
    if config is None:
        from .config import config as default_config
        config = default_config
    # Unknown LOG_LEVEL values fall back to INFO
    level = logging.getLevelName(config.log_level.upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logging(config: Optional[AppConfig] = None) -> None:
    """
    Configure the root handler and quiet the AWS and driver loggers.

    Args:
        config: AppConfig instance, uses default if None
    """
    logging.basicConfig(level=_resolve_level(config), format=LOG_FORMAT, handlers=[logging.StreamHandler(sys.stdout)])

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str, config: Optional[AppConfig] = None) -> logging.Logger:
    """Return a module logger at the configured level."""
    logger = logging.getLogger(name)
    logger.setLevel(_resolve_level(config))
    return logger
