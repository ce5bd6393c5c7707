import logging.config
import os

from exam_portal.utils.config import settings


def build_logging_config(level: str | None = None, log_dir: str | None = None) -> dict:
    level = (level or settings.log_level).upper()
    log_dir = log_dir if log_dir is not None else settings.log_dir

    handlers: dict = {
        "console": {
            "class": "logging.StreamHandler",
            "level": level,
            "formatter": "default",
            "stream": "ext://sys.stdout",
        },
    }
    if log_dir:
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": level,
            "formatter": "default",
            "filename": os.path.join(log_dir, "app.log"),
            "maxBytes": 10485760,
            "backupCount": 5,
        }
        handlers["error_file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": "ERROR",
            "formatter": "default",
            "filename": os.path.join(log_dir, "error.log"),
            "maxBytes": 10485760,
            "backupCount": 5,
        }
    handler_names = list(handlers)

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            },
        },
        "handlers": handlers,
        "root": {
            "level": level,
            "handlers": handler_names,
        },
        "loggers": {
            "exam_portal": {
                "level": level,
                "handlers": handler_names,
                "propagate": False,
            },
            "uvicorn.access": {
                "level": "WARNING",
                "handlers": ["console"],
                "propagate": False,
            },
        },
    }


def configure_logging(level: str | None = None, log_dir: str | None = None) -> None:
    log_dir = log_dir if log_dir is not None else settings.log_dir
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
    logging.config.dictConfig(build_logging_config(level=level, log_dir=log_dir))
