# backend/docmanager/utils/logging.py
import logging
import sys
import time
from contextlib import contextmanager
from logging.handlers import RotatingFileHandler
from ..config import settings

LOG_DIR = settings.LOGS_PATH
LOG_DIR.mkdir(parents=True, exist_ok=True)

# Attributes every LogRecord has; anything else on a record came from `extra`
_RECORD_ATTRS = set(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {"message", "asctime"}


class ExtraFieldsFormatter(logging.Formatter):
    """Formatter that appends the record's `extra` fields as key=value pairs"""

    def format(self, record):
        line = super().format(record)
        fields = {
            key: value for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS
        }
        if not fields:
            return line
        head, sep, traceback = line.partition("\n")
        pairs = " ".join(f"{key}={value}" for key, value in fields.items())
        return f"{head} | {pairs}{sep}{traceback}"


# Create formatters
verbose_formatter = ExtraFieldsFormatter(
    '\033[1;36m%(asctime)s\033[0m - \033[1;33m%(name)s\033[0m - \033[1;35m%(levelname)s\033[0m [\033[1;34m%(module)s:%(lineno)d\033[0m] - %(message)s'
)
file_formatter = ExtraFieldsFormatter(
    '%(asctime)s - %(name)s - %(levelname)s [%(module)s:%(lineno)d] - %(message)s'
)


class DocManagerLogger:
    """Logger wrapper that keeps `extra` keys from clobbering LogRecord attributes"""

    reserved_attrs = _RECORD_ATTRS

    def __init__(self, name: str):
        self.logger = logging.getLogger(f"docmanager.{name}")
        self.logger.setLevel(settings.LOG_LEVEL.upper())
        self.setup_handlers(name)

    def setup_handlers(self, name: str):
        """Set up file and console handlers"""
        if self.logger.handlers:
            return

        file_handler = RotatingFileHandler(
            LOG_DIR / f"{name}.log",
            maxBytes=10*1024*1024,  # 10MB
            backupCount=5
        )
        file_handler.setFormatter(file_formatter)
        self.logger.addHandler(file_handler)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(verbose_formatter)
        self.logger.addHandler(console_handler)

    def _sanitize_extra(self, extra):
        if extra is None:
            return None

        sanitized = {}
        for key, value in extra.items():
            if key in self.reserved_attrs:
                sanitized[f"extra_{key}"] = value
            else:
                sanitized[key] = value
        return sanitized

    def _log(self, level, msg, extra, exc_info, stacklevel=3):
        # stacklevel points module:lineno at the caller of debug()/info()/...
        self.logger.log(level, msg, extra=self._sanitize_extra(extra), exc_info=exc_info, stacklevel=stacklevel)

    def debug(self, msg, extra=None, exc_info=None):
        self._log(logging.DEBUG, msg, extra, exc_info)

    def info(self, msg, extra=None, exc_info=None):
        self._log(logging.INFO, msg, extra, exc_info)

    def warning(self, msg, extra=None, exc_info=None):
        self._log(logging.WARNING, msg, extra, exc_info)

    def error(self, msg, extra=None, exc_info=None):
        self._log(logging.ERROR, msg, extra, exc_info)

    @contextmanager
    def timed(self, msg, extra=None, level=logging.INFO):
        """Log `msg` with `processing_time_ms` once the block completes.

        Yields the `extra` dict so the block can add fields to the record.
        Nothing is logged when the block raises.
        """
        fields = dict(extra or {})
        start_time = time.perf_counter()
        yield fields
        fields["processing_time_ms"] = round((time.perf_counter() - start_time) * 1000, 2)
        # generator frame -> contextlib __exit__ -> caller's with block
        self._log(level, msg, fields, None, stacklevel=4)


# Create loggers for different components
api_logger = DocManagerLogger("api")
db_logger = DocManagerLogger("database")
service_logger = DocManagerLogger("service")
ocr_logger = DocManagerLogger("ocr")

__all__ = ["api_logger", "db_logger", "service_logger", "ocr_logger"]
