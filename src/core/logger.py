import logging
import sys
from datetime import datetime, timezone

import orjson


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        # Merge extra attributes (structured data)
        if hasattr(record, "structured_data"):
            log_obj.update(record.structured_data)

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return orjson.dumps(log_obj, default=str).decode("utf-8")


def setup_logger(name: str = "askjavier", level: str = "INFO") -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(level.upper())

    # Avoid duplicate handlers
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JSONFormatter())
        logger.addHandler(handler)

    return logger


def setup_logging(level: str = "INFO") -> None:
    """Route every module logger through the JSON handler on the root logger."""
    setup_logger(name="", level=level)
    # Keep the access log, but in the same format
    for noisy in ("uvicorn.access", "uvicorn.error"):
        logging.getLogger(noisy).handlers.clear()
        logging.getLogger(noisy).propagate = True


# Global Logger Instance
app_logger = setup_logger()
app_logger.propagate = False
