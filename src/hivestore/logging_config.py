"""
Logging setup for hivestore.

Everything logs through the loguru `logger` re-exported here. Console output
goes to stderr unless machine mode is on; a rotating file sink under
data/logs/ is opt-in.

Environment Variables:
    HIVESTORE_MACHINE_MODE: Suppress console logging
    HIVESTORE_FILE_LOGGING: Also write data/logs/hivestore.log
    HIVESTORE_LOG_LEVEL: Console level when none is passed (default: INFO)
"""

import os
import sys

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DDTHH:mm:ss.SSSZ} | {level: <8} | {name}:{function}:{line} - {message}"

_configured = False


def _env_flag(key: str) -> bool:
    return os.getenv(key, "").lower() in ("1", "true", "yes")


def setup_logging(level=None, suppress_console=None, enable_file_logging=None, force=False):
    """
    Install the console and file sinks.

    Runs once per process unless force is set (the CLI and the test suite
    reconfigure per invocation).

    Args:
        level: Console level. Defaults to HIVESTORE_LOG_LEVEL, then INFO
        suppress_console: Drop the console sink. None reads HIVESTORE_MACHINE_MODE
        enable_file_logging: Add the file sink. None reads HIVESTORE_FILE_LOGGING
        force: Replace sinks installed by an earlier call
    """
    global _configured
    if _configured and not force:
        return
    _configured = True

    logger.remove()

    level = level or os.getenv("HIVESTORE_LOG_LEVEL", "INFO").upper()
    if suppress_console is None:
        suppress_console = _env_flag("HIVESTORE_MACHINE_MODE")
    if enable_file_logging is None:
        enable_file_logging = _env_flag("HIVESTORE_FILE_LOGGING")

    if not suppress_console:
        logger.add(sys.stderr, level=level, format=CONSOLE_FORMAT, colorize=True)

    if enable_file_logging:
        from hivestore.paths import get_paths
        paths = get_paths()
        paths.ensure_dirs()
        logger.add(
            paths.logs_dir / "hivestore.log",
            level="INFO",
            format=FILE_FORMAT,
            rotation="10 MB",
            retention="7 days",
            compression="gz",
            enqueue=True,
            catch=True,
        )


setup_logging()
