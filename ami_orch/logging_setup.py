import json
import logging
import os
import sys
from typing import Any, Dict

# Machine-readable logs for unattended builds (CI release pipelines).
# One JSON object per line on stderr; stdout carries only the
# "Created AMI in <region> region: <id>" result lines.
# Root logger is WARNING by default, logging.getLogger("ami") (and sub loggers) is INFO.

# Attributes every LogRecord carries; anything else on a record came from `extra`.
_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", logging.NOTSET, "", 0, "", None, None))) | {
    "message",
    "asctime",
    "taskName",
}

# Loggers of the signing stack; their DEBUG output dumps canonical requests.
_QUIET_LOGGERS = ("botocore", "urllib3")


def record_context(record: logging.LogRecord) -> Dict[str, Any]:
    """Return the `extra` fields attached to a record (stage, region, resource ids...)."""
    return {
        k: v for k, v in vars(record).items()
        if k not in _STANDARD_ATTRS and not k.startswith("_")
    }


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": record.created,
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for k, v in record_context(record).items():
            payload.setdefault(k, v)

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack"] = self.formatStack(record.stack_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def quiet_signing_loggers() -> None:
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _env_level(name: str, default: str) -> str:
    return os.environ.get(name, default).upper()


def setup_logging(verbose: bool = False) -> None:
    """
    Send JSON log lines to stderr.

    Args:
        verbose: ami loggers at DEBUG, root at INFO. Otherwise levels come from
                 AMI_ROOT_LOG_LEVEL (default WARNING) and AMI_APP_LOG_LEVEL (default INFO).
    """
    root_level = "INFO" if verbose else _env_level("AMI_ROOT_LOG_LEVEL", "WARNING")
    app_level = "DEBUG" if verbose else _env_level("AMI_APP_LOG_LEVEL", "INFO")

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter())
    # Loggers decide what gets through
    handler.setLevel(logging.DEBUG)

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(root_level)
    root.addHandler(handler)

    app_logger = logging.getLogger("ami")
    app_logger.setLevel(app_level)
    app_logger.propagate = True

    quiet_signing_loggers()
