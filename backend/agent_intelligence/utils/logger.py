# backend/agent_intelligence/utils/logger.py
from loguru import logger
import os
import sys

logger.remove()
logger.add(
    sys.stdout,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
    level=os.getenv("LOG_LEVEL", "INFO")
)

if os.getenv("LOG_DIR"):
    logger.add(
        os.path.join(os.environ["LOG_DIR"], "agent_intelligence_{time}.log"),
        rotation="500 MB",
        retention="10 days",
        level="DEBUG"
    )
