import sys
from pathlib import Path

from loguru import logger

from cyberbot.config.schema import Config


def configure_logger(config: Config):
    """Configure loguru logger based on settings."""
    logger.remove()  # Remove default handler

    if not config.logging.enabled:
        return

    # Console (stderr)
    logger.add(sys.stderr, level=config.logging.level)

    # File
    if config.logging.file_enabled:
        path = Path(config.logging.file_path).expanduser()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            logger.add(
                path,
                rotation=config.logging.rotation,
                retention=config.logging.retention,
                level=config.logging.level,
                enqueue=True,  # Async safe
            )
        except OSError as e:
            logger.warning(f"File logging disabled, cannot write {path}: {e}")
