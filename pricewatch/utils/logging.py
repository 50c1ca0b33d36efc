import logging
import sys
import os
from pathlib import Path
from datetime import datetime
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler
from pythonjsonlogger import jsonlogger

class EnhancedJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter with the fields we grep for in production"""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        log_record['timestamp'] = datetime.utcnow().isoformat() + 'Z'
        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        log_record['function'] = record.funcName
        log_record['line'] = record.lineno
        log_record['module'] = record.module

        log_record['application'] = 'PriceWatch'
        log_record['environment'] = os.getenv('ENVIRONMENT', 'unknown')
        log_record['process_id'] = os.getpid()

        # Contextual fields passed via extra={'extra_fields': {...}}
        if hasattr(record, 'extra_fields'):
            log_record.update(record.extra_fields)

class ColorFormatter(logging.Formatter):
    """Color formatter for console output"""

    grey = "\x1b[38;20m"
    green = "\x1b[32;20m"
    yellow = "\x1b[33;20m"
    red = "\x1b[31;20m"
    bold_red = "\x1b[31;1m"
    reset = "\x1b[0m"

    FORMATS = {
        logging.DEBUG: f"{grey}%(asctime)s [%(levelname)s] %(name)s:%(funcName)s:%(lineno)d - %(message)s{reset}",
        logging.INFO: f"{green}%(asctime)s [%(levelname)s] %(name)s:%(funcName)s - %(message)s{reset}",
        logging.WARNING: f"{yellow}%(asctime)s [%(levelname)s] %(name)s:%(funcName)s - %(message)s{reset}",
        logging.ERROR: f"{red}%(asctime)s [%(levelname)s] %(name)s:%(funcName)s - %(message)s{reset}",
        logging.CRITICAL: f"{bold_red}%(asctime)s [%(levelname)s] %(name)s:%(funcName)s - %(message)s{reset}"
    }

    def format(self, record):
        log_fmt = self.FORMATS.get(record.levelno, self.FORMATS[logging.DEBUG])
        formatter = logging.Formatter(log_fmt, datefmt='%Y-%m-%d %H:%M:%S')
        return formatter.format(record)

def setup_logging(log_level: str = "INFO", log_dir: str = "logs"):
    """
    Logging setup for the monitor process:
    - Structured JSON main log, rotated daily
    - Separate error-only log
    - Colored console output
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger()
    logger.setLevel(getattr(logging, log_level.upper()))
    logger.handlers.clear()

    # ============================================
    # 1. JSON FILE HANDLER (daily rotation)
    # ============================================

    json_formatter = EnhancedJsonFormatter(
        '%(timestamp)s %(level)s %(logger)s %(function)s:%(lineno)d %(message)s'
    )

    main_handler = TimedRotatingFileHandler(
        filename=log_path / "pricewatch.log",
        when='midnight',
        interval=1,
        backupCount=14,
        encoding='utf-8',
        utc=True
    )
    main_handler.setLevel(logging.DEBUG)
    main_handler.setFormatter(json_formatter)
    logger.addHandler(main_handler)

    # ============================================
    # 2. ERROR-ONLY FILE HANDLER
    # ============================================

    error_handler = RotatingFileHandler(
        filename=log_path / "pricewatch_errors.log",
        maxBytes=10 * 1024 * 1024,  # 10 MB per file
        backupCount=5,
        encoding='utf-8'
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(json_formatter)
    logger.addHandler(error_handler)

    # ============================================
    # 3. CONSOLE HANDLER
    # ============================================

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(logging.INFO)
    console.setFormatter(ColorFormatter())
    logger.addHandler(console)

    # ============================================
    # 4. SUPPRESS NOISY LIBRARIES
    # ============================================

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)

    logger.info(f"Logging initialized at level {log_level}")
    logger.info(f"Log directory: {log_path.absolute()}")

    return logger
