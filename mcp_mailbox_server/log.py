import os
import sys

from loguru import logger

logger.remove()
logger.add(sys.stderr, level=os.getenv("MCP_MAILBOX_SERVER_LOG_LEVEL", "INFO"))

__all__ = ["logger"]
