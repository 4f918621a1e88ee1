import logging
import logging.config
from ticket_agent.config import settings
import uvicorn


def build_log_config(level_name: str, log_file: str) -> dict:
    """Return a logging config aligned with Uvicorn that also formats service logs and writes to a rotating file."""
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "()": "uvicorn.logging.DefaultFormatter",
                "fmt": "%(asctime)s | %(levelname)s | %(threadName)s | %(name)s | %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "access": {
                "()": "uvicorn.logging.AccessFormatter",
                "fmt": "%(asctime)s | %(levelname)s | %(client_addr)s - \"%(request_line)s\" %(status_code)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": "ext://sys.stdout",
            },
            "access": {
                "class": "logging.StreamHandler",
                "formatter": "access",
                "stream": "ext://sys.stdout",
            },
            "file": {
                "class": "logging.handlers.RotatingFileHandler",
                "formatter": "default",
                "filename": log_file,
                "maxBytes": 5_000_000,
                "backupCount": 5,
                "encoding": "utf-8",
            },
        },
        "loggers": {
            "uvicorn": {"level": level_name, "handlers": ["default", "file"], "propagate": False},
            "uvicorn.error": {"level": level_name, "handlers": ["default", "file"], "propagate": False},
            "uvicorn.access": {"level": "INFO", "handlers": ["access", "file"], "propagate": False},
            "ticket_agent": {"level": level_name},
            # PIL is chatty at DEBUG
            "PIL": {"level": "WARNING"},
        },
        "root": {"level": level_name, "handlers": ["default", "file"]},
    }

if __name__ == "__main__":
    level_name = "DEBUG" if settings.DEBUG else "INFO"
    settings.LOGS_DIR.mkdir(parents=True, exist_ok=True)
    log_file = settings.LOGS_DIR / "app.log"
    log_config = build_log_config(level_name, str(log_file))
    # Configure now so early import-time logs use our formatter
    logging.config.dictConfig(log_config)
    # Import string so the app (and its worker pool) is built after logging is configured
    uvicorn.run(
        "ticket_agent.main:app",
        host=settings.APP_HOST,
        port=settings.APP_PORT,
        log_config=log_config,
        log_level=level_name.lower(),
    )
