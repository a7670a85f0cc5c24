"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from pythonjsonlogger import jsonlogger

from factor_engine.config import settings


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


def log_transition(
    operation_id: Any,
    from_status: str,
    to_status: str,
    version_id: Optional[Any] = None,
) -> None:
    """Log structured lifecycle transition for audit analysis"""
    logging.info(
        "Operation transition",
        extra={
            "operation_id": str(operation_id),
            "step": "transition",
            "from_status": from_status,
            "to_status": to_status,
            "version_id": str(version_id) if version_id else None,
        },
    )


def log_settlement(
    operation_id: Any,
    version_id: Any,
    idempotent: bool,
    discount_amount_cents: int = 0,
    buyback_amount_cents: int = 0,
    factor_costs_amount_cents: int = 0,
) -> None:
    """Log structured settlement outcome"""
    logging.info(
        "Settlement completed",
        extra={
            "operation_id": str(operation_id),
            "version_id": str(version_id) if version_id else None,
            "step": "settlement",
            "idempotent": idempotent,
            "discount_amount_cents": discount_amount_cents,
            "buyback_amount_cents": buyback_amount_cents,
            "factor_costs_amount_cents": factor_costs_amount_cents,
        },
    )
