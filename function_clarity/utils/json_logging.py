import json
import logging
import os
import sys
from typing import Any, Dict, Optional

_STANDARD_ATTRS = {
    "args", "asctime", "created", "exc_info", "exc_text", "filename", "funcName", "levelname",
    "levelno", "lineno", "module", "msecs", "msg", "name", "pathname", "process", "processName",
    "relativeCreated", "stack_info", "taskName", "thread", "threadName", "ts",
}


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        data: Dict[str, Any] = {
            "ts": getattr(record, "ts", None) or self.formatTime(record, "%Y-%m-%dT%H:%M:%S%z"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "module": record.module,
            "funcName": record.funcName,
            "lineno": record.lineno,
        }
        # extra fields (cycle_id, function_identity, status ...) passed via `extra=`
        for k, v in record.__dict__.items():
            if k in _STANDARD_ATTRS or k.startswith("_"):
                continue
            try:
                json.dumps({k: v})
                data[k] = v
            except (TypeError, ValueError):
                data[k] = str(v)
        if record.exc_info:
            data["exc"] = self.formatException(record.exc_info)
        return json.dumps(data, ensure_ascii=False)


def configure_logging(env: Optional[Dict[str, str]] = None) -> logging.Logger:
    """
    Install a single handler on the package logger.
    FUNCTION_CLARITY_LOG_LEVEL sets the level, FUNCTION_CLARITY_LOG_JSON=false switches to plain text.
    """
    env = env if env is not None else os.environ
    level = getattr(logging, str(env.get("FUNCTION_CLARITY_LOG_LEVEL", "INFO")).upper(), logging.INFO)
    logger = logging.getLogger("function_clarity")
    if logger.handlers:
        logger.setLevel(level)
        return logger
    handler = logging.StreamHandler(sys.stdout)
    if str(env.get("FUNCTION_CLARITY_LOG_JSON", "true")).lower() in ("0", "false", "no"):
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s", "%Y-%m-%d %H:%M:%S"))
    else:
        handler.setFormatter(JSONFormatter())
    logger.addHandler(handler)
    logger.setLevel(level)
    return logger
