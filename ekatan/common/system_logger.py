import logging
import os
import sys
import traceback

from concurrent_log_handler import ConcurrentRotatingFileHandler

from ekatan.config import Settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class SystemLogger:
    """Owns the handlers of the ``ekatan`` logger namespace.

    Module loggers created with ``logging.getLogger(__name__)`` inside the
    package propagate here, so configuring this one logger is enough.
    """

    def __init__(self, name="ekatan"):
        self.logger = logging.getLogger(name)
        self.console_handler = None
        self.file_handler = None

    @property
    def configured(self):
        return self.console_handler is not None

    def configure_logging(self, settings: Settings):
        if self.configured:
            return

        level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
        self.logger.setLevel(level)
        formatter = logging.Formatter(LOG_FORMAT)

        # Console Handler
        self.console_handler = logging.StreamHandler(sys.stdout)
        self.console_handler.setLevel(level)
        self.console_handler.setFormatter(formatter)
        self.logger.addHandler(self.console_handler)

        # File Handler with Concurrent Rotation
        os.makedirs(settings.LOG_DIR, exist_ok=True)
        self.file_handler = ConcurrentRotatingFileHandler(
            os.path.join(settings.LOG_DIR, "system.log"),
            maxBytes=settings.MAX_LOG_FILE_SIZE,
            backupCount=settings.BACKUP_COUNT,
            encoding="utf-8",
        )
        self.file_handler.setLevel(level)
        self.file_handler.setFormatter(formatter)
        self.logger.addHandler(self.file_handler)

    def _log(self, level, message, *args, **kwargs):
        extra = kwargs.pop("extra", {})
        exc_info = kwargs.pop("exc_info", None)

        if exc_info:
            extra["traceback"] = traceback.format_exc()

        self.logger.log(level, message, *args, extra=extra, exc_info=exc_info, **kwargs)

    def debug(self, message, *args, **kwargs):
        self._log(logging.DEBUG, message, *args, **kwargs)

    def info(self, message, *args, **kwargs):
        self._log(logging.INFO, message, *args, **kwargs)


# Create a global instance of the logger
system_logger = SystemLogger()


def get_logger():
    return system_logger
