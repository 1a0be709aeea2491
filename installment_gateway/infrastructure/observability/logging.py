"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict
from pythonjsonlogger import jsonlogger

from installment_gateway.config import settings


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

    # Ledger retries already log their own outcome
    logging.getLogger("httpx").setLevel(logging.WARNING)


def log_schedule_built(
    request_id: str,
    sale_id: int,
    reference_codes: list[str],
    installment_count: int,
    monthly_amount: int,
    duration_ms: float,
    step: str = "schedule_built",
) -> None:
    """Log structured schedule build (or rebuild) outcome"""
    logging.info(
        "Schedule persisted",
        extra={
            "request_id": request_id,
            "sale_id": sale_id,
            "step": step,
            "reference_codes": reference_codes,
            "installment_count": installment_count,
            "monthly_amount": monthly_amount,
            "duration_ms": duration_ms,
        },
    )


def log_postal_reconciliation(
    request_id: str,
    cleared: int,
    waiting: int,
    blocked: int,
    unresolved: int,
    aborted: bool,
    duration_ms: float,
) -> None:
    """Log structured postal batch reconciliation summary"""
    logging.info(
        "Postal batch reconciled",
        extra={
            "request_id": request_id,
            "step": "postal_import",
            "cleared": cleared,
            "waiting": waiting,
            "blocked": blocked,
            "unresolved": unresolved,
            "aborted": aborted,
            "duration_ms": duration_ms,
        },
    )
