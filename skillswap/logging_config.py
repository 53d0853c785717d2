import json
import logging
import logging.config
import sys
from typing import Any, Dict

# LogRecord 기본 속성 (extra 필드 구분용)
_RESERVED_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """한 줄 JSON 로그. logger.info(..., extra={...}) 필드도 함께 출력"""

    def format(self, record: logging.LogRecord) -> str:
        log_record: Dict[str, Any] = {
            "timestamp": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in vars(record).items():
            if key not in _RESERVED_ATTRS and key not in log_record:
                log_record[key] = value
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_record, ensure_ascii=False, default=str)


def _logger(handlers, level: str, propagate: bool = False) -> Dict[str, Any]:
    return {"handlers": handlers, "level": level, "propagate": propagate}


def setup_logging(log_level: str = "INFO", json_output: bool = False) -> None:
    """
    dictConfig 기반 로깅 설정

    - console: stdout, 로컬은 사람이 읽는 포맷 / 운영(Lambda)은 JSON
    - error_console: stderr, ERROR 이상만 파일:라인 포함
    - sqlalchemy.engine 은 DEBUG 모드가 아니면 WARNING 으로 고정
    """
    log_level = log_level.upper()

    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "readable": {
                "format": "%(asctime)s | %(levelname)-8s | %(name)-32s | %(message)s",
            },
            "located": {
                "format": "%(asctime)s | %(levelname)-8s | %(name)s (%(pathname)s:%(lineno)d)\n%(message)s",
            },
            "json": {"()": JsonFormatter},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "json" if json_output else "readable",
                "stream": sys.stdout,
            },
            "error_console": {
                "class": "logging.StreamHandler",
                "formatter": "json" if json_output else "located",
                "stream": sys.stderr,
                "level": "ERROR",
            },
        },
        "loggers": {
            "": _logger(["console"], log_level, propagate=True),
            "skillswap": _logger(["console", "error_console"], log_level),
            "uvicorn.error": _logger(["console", "error_console"], log_level),
            "uvicorn.access": _logger(["console"], log_level),
            "sqlalchemy.engine": _logger(
                ["console"], "DEBUG" if log_level == "DEBUG" else "WARNING"
            ),
        },
    }
    logging.config.dictConfig(logging_config)
