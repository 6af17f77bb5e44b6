"""
Logging Utilities — console + LOG_DIR file output for every module logger.
"""
import logging
import os

from app.config import get_settings

_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_configured = False


def _configure_root() -> None:
    global _configured
    if _configured:
        return
    settings = get_settings()

    root = logging.getLogger("app")
    root.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)

    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(_FORMAT))
    root.addHandler(console)

    try:
        os.makedirs(settings.LOG_DIR, exist_ok=True)
        file_handler = logging.FileHandler(os.path.join(settings.LOG_DIR, "server.log"), mode="a")
        file_handler.setFormatter(logging.Formatter(_FORMAT))
        root.addHandler(file_handler)
    except OSError:
        root.warning("Log directory %s is not writable; file logging disabled", settings.LOG_DIR)

    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Return a module logger under the shared `app` hierarchy."""
    _configure_root()
    if not name.startswith("app"):
        name = f"app.{name}"
    return logging.getLogger(name)
