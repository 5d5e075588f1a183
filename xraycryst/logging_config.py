"""
Logging configuration for XrayCryst.

Provides structured JSON logging and typed audit events for record
creation, index maintenance and workflow transitions.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Optional

# Context variable for request ID tracking
request_id_var: ContextVar[str] = ContextVar('request_id', default='')


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    One JSON object per line; audit events merge their fields in.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_fields'):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class WorkflowAuditLogger:
    """
    Audit events for the analysis ledger.

    Each method emits one record carrying an event_type and the
    identifiers involved, so the trail can be filtered per record or owner.
    """

    def __init__(self, name: str = "xraycryst.audit"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, event_type: str, **kwargs) -> None:
        extra = {
            "event_type": event_type,
            "request_id": request_id_var.get(),
            **kwargs
        }
        record = self._logger.makeRecord(
            self._logger.name,
            level,
            "",
            0,
            f"{event_type}: {kwargs.get('message', '')}",
            (),
            None
        )
        record.extra_fields = extra
        self._logger.handle(record)

    def record_created(self, record_id: str, owner: str, created_at: int) -> None:
        self._log(
            logging.INFO,
            "RECORD_CREATED",
            record_id=record_id,
            owner=owner,
            created_at=created_at,
            message=f"Analysis {record_id} submitted by {owner}"
        )

    def index_registered(self, record_id: str, index_size: int) -> None:
        self._log(
            logging.INFO,
            "INDEX_REGISTERED",
            record_id=record_id,
            index_size=index_size,
            message=f"Analysis {record_id} added to index ({index_size} keys)"
        )

    def record_transition(self, record_id: str, from_status: str, to_status: str, artifact_count: int = 0) -> None:
        """Log a persisted status change."""
        level = logging.INFO if to_status != "failed" else logging.WARNING
        self._log(
            level,
            "RECORD_TRANSITION",
            record_id=record_id,
            from_status=from_status,
            to_status=to_status,
            artifact_count=artifact_count,
            message=f"Analysis {record_id}: {from_status} -> {to_status}"
        )

    def advance_rejected(self, record_id: str, caller: str, reason: str) -> None:
        self._log(
            logging.WARNING,
            "ADVANCE_REJECTED",
            record_id=record_id,
            caller=caller,
            reason=reason,
            message=f"Advance of {record_id} rejected: {reason}"
        )

    def listing_skipped(self, record_id: str, error: str) -> None:
        """Log an indexed record that could not be fetched or decoded."""
        self._log(
            logging.WARNING,
            "LISTING_SKIPPED",
            record_id=record_id,
            error=error,
            message=f"Skipping analysis {record_id}: {error}"
        )

    def rate_limit_exceeded(self, client_id: str, endpoint: str) -> None:
        self._log(
            logging.WARNING,
            "RATE_LIMIT_EXCEEDED",
            client_id=client_id,
            endpoint=endpoint,
            message=f"Rate limit exceeded for {client_id} on {endpoint}"
        )

    def authentication_failed(self, claimed_address: str, endpoint: str, reason: str) -> None:
        self._log(
            logging.WARNING,
            "AUTHENTICATION_FAILED",
            claimed_address=claimed_address,
            endpoint=endpoint,
            reason=reason,
            message=f"Caller claiming {claimed_address or '(none)'} rejected on {endpoint}: {reason}"
        )

    def index_unreadable(self, error: str) -> None:
        self._log(
            logging.ERROR,
            "INDEX_UNREADABLE",
            error=error,
            message=f"Analysis index unreadable, listing as empty: {error}"
        )


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON formatting (recommended for production)
        log_file: Optional file path for log output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def set_request_id(request_id: Optional[str] = None) -> str:
    """
    Set the request ID for the current context.

    Args:
        request_id: Request ID to set, or None to generate one

    Returns:
        The request ID that was set
    """
    if request_id is None:
        request_id = str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


# Global audit logger instance
audit_log = WorkflowAuditLogger()
