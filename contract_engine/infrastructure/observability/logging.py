"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger

from contract_engine.config import settings
from contract_engine.domain.models import PipelineOutcome


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: Optional[str] = None) -> None:
    """Configure structured JSON logging, at settings.log_level unless given"""
    logger = logging.getLogger()
    logger.setLevel(level or settings.log_level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_pipeline_run(outcome: PipelineOutcome, duration_ms: float) -> None:
    """Log structured scan outcome for analysis"""
    logging.info(
        "Contract scan completed",
        extra={
            "bank_id": outcome.bank_id,
            "step": "contract_scan_complete",
            "new_contracts": len(outcome.new_contracts),
            "exact_matched": outcome.exact_matched,
            "drift_matched": outcome.drift_matched,
            "synthesized_linked": outcome.synthesized_linked,
            "history_entries": outcome.history_entries,
            "reopened_contracts": len(outcome.reopened_contracts),
            "closed_contracts": len(outcome.closed_contracts),
            "duration_ms": duration_ms,
        },
    )
