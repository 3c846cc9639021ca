"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict
from pythonjsonlogger import jsonlogger
from bisyaroh_gateway.config import settings


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


def log_payment(
    request_id: str,
    student_id: str,
    payment_id: str,
    payment_method: str,
    periods_completed: int,
    final_credit_balance: int,
    duration_ms: float,
) -> None:
    """Log structured payment outcome for reconciliation"""
    logging.info(
        "Payment committed",
        extra={
            "request_id": request_id,
            "student_id": student_id,
            "payment_id": payment_id,
            "step": "payment_commit",
            "payment_method": payment_method,
            "periods_completed": periods_completed,
            "final_credit_balance": final_credit_balance,
            "duration_ms": duration_ms,
        },
    )
