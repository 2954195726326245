import os
import logging.config

from dotenv import load_dotenv

load_dotenv()  # reads .env next to the working directory if present


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


DATABASE_URL = os.getenv("DATABASE_URL")
SECRET_KEY = os.getenv("ZEFIT_SECRET_KEY", "dev-secret")  # fine for local/demo use only
LOG_LEVEL = os.getenv("ZEFIT_LOG_LEVEL", "INFO").upper()

STORAGE_ROOT = os.getenv("ZEFIT_STORAGE_ROOT", os.path.join(os.getcwd(), "storage"))
STORAGE_BASE_URL = os.getenv("ZEFIT_STORAGE_BASE_URL", "/storage")

# Overlapping packages are allowed unless the operator turns this on.
REJECT_OVERLAPPING_PACKAGES = _env_flag("ZEFIT_REJECT_OVERLAPPING_PACKAGES")

PRESENCE_WINDOW_MINUTES = int(os.getenv("ZEFIT_PRESENCE_WINDOW_MINUTES", "90"))
EXPIRING_SOON_DAYS = int(os.getenv("ZEFIT_EXPIRING_SOON_DAYS", "7"))

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {"format": "{levelname} {asctime} {name} {message}", "style": "{"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "verbose"},
    },
    "root": {"handlers": ["console"], "level": "WARNING"},
    "loggers": {
        "zefit": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
    },
}


def configure_logging() -> None:
    """Install the console handler for the ``zefit`` logger tree."""
    logging.config.dictConfig(LOGGING)
