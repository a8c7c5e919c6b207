"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from pythonjsonlogger import jsonlogger

from facility_ledger.config import settings

logger = logging.getLogger("facility_ledger")


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    root = logging.getLogger()
    root.setLevel(level)

    # Remove existing handlers
    root.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    root.addHandler(handler)


def log_transition(
    loan_id: str,
    operation: str,
    from_status: Optional[str],
    to_status: str,
    amount: Optional[Any],
    duration_ms: float,
) -> None:
    """Log structured outcome of a committed lifecycle operation"""
    logger.info(
        "Loan transition committed",
        extra={
            "loan_id": loan_id,
            "step": "transition_committed",
            "operation": operation,
            "from_status": from_status,
            "to_status": to_status,
            "amount": str(amount) if amount is not None else None,
            "duration_ms": duration_ms,
        },
    )


def log_rejection(operation: str, error: Exception, loan_id: Optional[str] = None) -> None:
    """Log a rejected operation with its error class"""
    logger.warning(
        f"Operation rejected: {error}",
        extra={
            "loan_id": loan_id,
            "step": "operation_rejected",
            "operation": operation,
            "error": type(error).__name__,
        },
    )
