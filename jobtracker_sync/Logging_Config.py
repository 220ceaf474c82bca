# Logging_Config.py
# Description: Configuration for logging
#
# Imports
import logging
import logging.handlers
from pathlib import Path
from typing import Any, Dict, Optional
#
# 3rd-Party Imports
from loguru import logger as loguru_logger
from textual.logging import TextualHandler
#
# Local Imports
from .config import get_cli_log_file_path, get_cli_setting
#
########################################################################################################################
#
# Functions:

LOG_FORMAT = "%(asctime)s [%(levelname)-8s] %(name)s:%(lineno)d - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_LOGURU_LEVEL_MAPPING = {
    "TRACE": logging.DEBUG, "DEBUG": logging.DEBUG, "INFO": logging.INFO,
    "SUCCESS": logging.INFO, "WARNING": logging.WARNING, "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def sink_to_standard_logging(message) -> None:
    """Loguru sink that re-emits each record through the standard `logging` logger of the same name."""
    record = message.record
    std_level = _LOGURU_LEVEL_MAPPING.get(record["level"].name, logging.INFO)
    std_logger = logging.getLogger(record["name"])
    if record["exception"]:
        std_logger.log(std_level, record["message"], exc_info=record["exception"])
    else:
        std_logger.log(std_level, record["message"])


def _level_from_name(level_name: Optional[str], default: int) -> int:
    if not level_name:
        return default
    level = logging.getLevelName(str(level_name).upper())
    return level if isinstance(level, int) else default


def configure_logging(app_config: Dict[str, Any], log_file_path: Optional[Path] = None,
                      use_textual_handler: bool = True) -> logging.Logger:
    """
    Sets up all logging handlers, including Loguru integration.

    Loguru output is forwarded into standard logging so both end up in the same handlers:
    textual's dev console and a rotating log file next to the local store.
    """
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    loguru_logger.remove()
    loguru_logger.add(sink_to_standard_logging, level="TRACE", format="{message}")

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    root_level = _level_from_name(app_config.get("general", {}).get("log_level"), logging.INFO)
    root_logger.setLevel(root_level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    if use_textual_handler:
        textual_console_handler = TextualHandler()
        textual_console_handler.setLevel(root_level)
        textual_console_handler.setFormatter(formatter)
        root_logger.addHandler(textual_console_handler)

    log_file_path = log_file_path or get_cli_log_file_path()
    try:
        log_file_path.parent.mkdir(parents=True, exist_ok=True)
        max_bytes = int(get_cli_setting("logging", "log_max_bytes", 10485760))
        backup_count = int(get_cli_setting("logging", "log_backup_count", 5))
        file_log_level = _level_from_name(get_cli_setting("logging", "file_log_level", "INFO"), logging.INFO)

        file_handler = logging.handlers.RotatingFileHandler(
            log_file_path, maxBytes=max_bytes, backupCount=backup_count, encoding='utf-8'
        )
        file_handler.setLevel(file_log_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
        if file_log_level < root_logger.level:
            root_logger.setLevel(file_log_level)
        logging.info(f"Standard Logging: Added RotatingFileHandler (File: '{log_file_path}', "
                     f"Level: {logging.getLevelName(file_log_level)}).")
    except (OSError, ValueError) as e:
        logging.warning(f"Could not set up file logging at {log_file_path}: {e}")

    loguru_logger.debug("Loguru is forwarding to standard logging.")
    logging.info(f"Logging setup complete. Root level: {logging.getLevelName(root_logger.level)}")
    return root_logger

#
# End of Logging_Config.py
########################################################################################################################
