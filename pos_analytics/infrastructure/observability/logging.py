"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Iterable

from pythonjsonlogger import jsonlogger

from pos_analytics.config import settings
from pos_analytics.domain.models import ClampEvent, DataQualityWarning

logger = logging.getLogger("pos_analytics")


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


def log_data_quality(warnings: Iterable[DataQualityWarning], source: str) -> int:
    """Log each recoverable input problem at WARNING; returns how many were logged"""
    count = 0
    for warning in warnings:
        count += 1
        logger.warning(
            "Data quality issue",
            extra={
                "step": "normalize",
                "source": source,
                "kind": warning.kind,
                "record_id": warning.record_id,
                "detail": warning.detail,
            },
        )
    return count


def log_payment_clamp(clamp: ClampEvent) -> None:
    """Log a payment that exceeded the outstanding balance"""
    logger.warning(
        "Payment clamped to outstanding balance",
        extra={
            "step": "record_payment",
            "credit_id": clamp.credit_id,
            "requested_amount": clamp.requested_amount,
            "applied_amount": clamp.applied_amount,
            "excess": clamp.excess,
        },
    )


def log_report(
    report: str,
    dimension: str,
    row_count: int,
    duration_ms: float,
    cache_hit: bool,
) -> None:
    """Log structured report outcome for analysis"""
    logger.info(
        "Report built",
        extra={
            "step": "report_complete",
            "report": report,
            "dimension": dimension,
            "row_count": row_count,
            "duration_ms": duration_ms,
            "cache_hit": cache_hit,
        },
    )
