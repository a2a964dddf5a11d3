import logging
import os
import sys
import json
from logging.handlers import RotatingFileHandler
from pathlib import Path

# --- Constants ---
LOG_DIR = Path(os.environ.get('COPILOT_LOG_DIR') or Path(__file__).resolve().parent.parent / 'logs')
LOG_FILE = LOG_DIR / 'routing.log'
MAX_BYTES = 10 * 1024 * 1024  # 10 MB
BACKUP_COUNT = 5
LOGGER_NAME = 'copilot'


class JsonFormatter(logging.Formatter):
    """
    Formats log records as a JSON string.
    """
    def format(self, record):
        log_object = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        provider = getattr(record, "provider", None)
        if provider:
            log_object["provider"] = provider
        if record.exc_info:
            log_object['exc_info'] = self.formatException(record.exc_info)

        return json.dumps(log_object)


def _level_from_env(default=logging.INFO):
    name = os.environ.get('LOG_LEVEL', '').upper()
    return getattr(logging, name, default) if name else default


def setup_logging(log_level=None):
    """
    Configures the engine logger.
    - Console: Human-readable plain text.
    - File: Machine-readable JSON, with rotation.
    """
    if log_level is None:
        log_level = _level_from_env()

    LOG_DIR.mkdir(parents=True, exist_ok=True)

    engine_logger = logging.getLogger(LOGGER_NAME)
    engine_logger.setLevel(log_level)
    engine_logger.propagate = False

    # --- Formatters ---
    plain_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    json_formatter = JsonFormatter()

    # --- Console Handler ---
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(plain_formatter)

    # --- Rotating File Handler (JSON) ---
    file_handler = RotatingFileHandler(
        LOG_FILE,
        maxBytes=MAX_BYTES,
        backupCount=BACKUP_COUNT,
        encoding='utf-8'
    )
    file_handler.setLevel(log_level)
    file_handler.setFormatter(json_formatter)

    # Clear existing handlers to avoid duplicates
    if engine_logger.handlers:
        engine_logger.handlers.clear()

    engine_logger.addHandler(console_handler)
    engine_logger.addHandler(file_handler)

    return engine_logger


# Initialize logging when the module is imported
logger = setup_logging()
