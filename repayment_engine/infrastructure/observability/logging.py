"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict
from pythonjsonlogger import jsonlogger

from repayment_engine.config import settings
from repayment_engine.domain.models import ScheduleChangeResult


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_schedule_change(
    request_id: str,
    result: ScheduleChangeResult,
    duration_ms: float,
) -> None:
    """Log structured outcome of one schedule event for analysis"""
    logging.info(
        "Schedule change completed",
        extra={
            "request_id": request_id,
            "loan_id": str(result.loan_id),
            "step": "schedule_change_complete",
            "trigger": result.trigger,
            "outcome": "success" if result.success else "partial",
            "new_remaining_balance": str(result.new_remaining_balance),
            "updated_count": result.updated_count,
            "inserted_count": result.inserted_count,
            "cancelled_count": result.cancelled_count,
            "converged": result.converged,
            "duration_ms": duration_ms,
        },
    )
