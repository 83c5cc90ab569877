# app/core/logger.py
from loguru import logger
import sys
import os

from app.config import settings

# Log directory
LOG_DIR = settings.log_dir
os.makedirs(LOG_DIR, exist_ok=True)

# Drop the default handler
logger.remove()

# Console
logger.add(
    sys.stdout,
    colorize=True,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
    level="DEBUG" if settings.debug else "INFO"
)

# File (everything)
logger.add(
    f"{LOG_DIR}/campusvote.log",
    rotation="10 MB",
    retention="30 days",
    compression="zip",
    format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
    level="DEBUG"
)

# Errors only. Reconciliation faults land here for operators.
logger.add(
    f"{LOG_DIR}/error.log",
    rotation="10 MB",
    retention="30 days",
    compression="zip",
    format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message} | {extra}",
    level="ERROR"
)
