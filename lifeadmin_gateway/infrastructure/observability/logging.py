"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from pythonjsonlogger import jsonlogger

from lifeadmin_gateway.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging on the root logger"""
    logger = logging.getLogger()
    logger.setLevel(level)

    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_import_outcome(
    session_id: str,
    owner_id: str,
    status: str,
    stage: str,
    duration_ms: float,
    total_transactions: int = 0,
    recurring_detected: int = 0,
    error_message: Optional[str] = None,
) -> None:
    """Log structured pipeline outcome for analysis"""
    logging.info(
        "Import pipeline finished",
        extra={
            "session_id": session_id,
            "owner_id": owner_id,
            "step": "import_complete",
            "status": status,
            "stage": stage,
            "duration_ms": duration_ms,
            "total_transactions": total_transactions,
            "recurring_detected": recurring_detected,
            "error_message": error_message,
        },
    )


def log_renewal_sweep(processed_count: int, reminders_sent: int, errors: int, duration_ms: float) -> None:
    logging.info(
        "Renewal sweep finished",
        extra={
            "step": "renewal_sweep",
            "processed_count": processed_count,
            "reminders_sent": reminders_sent,
            "errors": errors,
            "duration_ms": duration_ms,
        },
    )
