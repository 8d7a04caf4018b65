import logging
import logging.config
import os
import sys

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FILENAME = "auditor.log"


class ColourizedFormatter(logging.Formatter):
    """
    Formatter that colours the level name on terminals.
    Colours are skipped when NO_COLOR is set or the stream is not a TTY.
    """
    GREY = "\x1b[90m"
    GREEN = "\x1b[32m"
    YELLOW = "\x1b[33m"
    RED = "\x1b[31m"
    BOLD_RED = "\x1b[31;1m"
    RESET = "\x1b[0m"

    LEVEL_COLORS = {
        logging.DEBUG: GREY,
        logging.INFO: GREEN,
        logging.WARNING: YELLOW,
        logging.ERROR: RED,
        logging.CRITICAL: BOLD_RED,
    }

    def __init__(self, fmt: str | None = None, datefmt: str | None = None, use_colour: bool | None = None):
        super().__init__(fmt=fmt, datefmt=datefmt)
        if use_colour is None:
            use_colour = not os.getenv("NO_COLOR") and sys.stdout.isatty()
        self.use_colour = use_colour

    def format(self, record: logging.LogRecord) -> str:
        if not self.use_colour or record.levelno not in self.LEVEL_COLORS:
            return super().format(record)

        orig_levelname = record.levelname
        record.levelname = f"{self.LEVEL_COLORS[record.levelno]}{record.levelname}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = orig_levelname


def get_logging_config(level: str | None = None, log_dir: str | None = None) -> dict:
    log_level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    detector_level = os.getenv("DETECTOR_LOG_LEVEL", log_level_name).upper()
    log_dir = log_dir or os.getenv("LOG_DIR")

    handlers: dict[str, dict] = {
        "console": {
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stdout",
            "formatter": "console",
        },
    }
    root_handlers = ["console"]
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        handlers["file"] = {
            "class": "logging.FileHandler",
            "filename": os.path.join(log_dir, LOG_FILENAME),
            "formatter": "plain",
            "encoding": "utf-8",
        }
        root_handlers.append("file")

    server_logger = {"handlers": root_handlers, "level": "INFO", "propagate": False}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "console": {
                "()": "statement_auditor.logger.ColourizedFormatter",
                "fmt": LOG_FORMAT,
            },
            "plain": {"format": LOG_FORMAT},
        },
        "handlers": handlers,
        "loggers": {
            "": {"handlers": root_handlers, "level": log_level_name},
            "statement_auditor.detectors": {"level": detector_level},
            "uvicorn": dict(server_logger),
            "uvicorn.error": dict(server_logger),
            "uvicorn.access": dict(server_logger),
        },
    }


def setup_logging(level: str | None = None) -> None:
    logging.config.dictConfig(get_logging_config(level=level))


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
