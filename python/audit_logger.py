"""
Audit Trail Logging Module

Structured JSON log lines for identity verification activity:
- Committed mutations (which fields changed, which event was appended)
- Suppressed no-op mutations
- Validation and lookup failures

User-supplied values are sanitized before they reach the log to prevent
log injection.
"""

import json
import logging
import re
import uuid
from dataclasses import dataclass, field as dataclass_field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

MUTATION_COMMITTED = "MUTATION_COMMITTED"
MUTATION_STAGED = "MUTATION_STAGED"
MUTATION_NOOP = "MUTATION_NOOP"
VALIDATION_FAILED = "VALIDATION_FAILED"
LOOKUP_FAILED = "LOOKUP_FAILED"


def sanitize_for_logging(text: Any, max_length: int = 500) -> str:
    """Sanitize user input for safe logging, preventing log injection

    Removes newlines, carriage returns and other control characters that
    could be used to forge log entries, collapses whitespace and truncates.
    """
    if text is None or text == "":
        return ""
    sanitized = re.sub(r'[\r\n\x00-\x1f\x7f-\x9f]', ' ', str(text))
    sanitized = re.sub(r'\s+', ' ', sanitized).strip()
    if len(sanitized) > max_length:
        return sanitized[:max_length] + "...(truncated)"
    return sanitized


@dataclass
class AuditEntry:
    """Structured audit log entry"""
    entry_type: str  # MUTATION_COMMITTED, VALIDATION_FAILED, ...
    severity: str  # INFO, WARNING
    operation: str = ""  # Service operation, e.g. create_document
    subject_id: str = ""
    record_id: str = ""
    event_type: str = ""  # Verification event appended, if any
    changed_fields: list = dataclass_field(default_factory=list)
    error_code: str = ""
    field_name: str = ""
    message: str = ""
    request_id: str = ""
    actor_id: str = ""
    context: Dict[str, Any] = dataclass_field(default_factory=dict)
    timestamp: str = dataclass_field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': self.timestamp,
            'entry_type': self.entry_type,
            'severity': self.severity,
            'operation': self.operation,
            'subject_id': self.subject_id,
            'record_id': self.record_id,
            'event_type': self.event_type,
            'changed_fields': self.changed_fields,
            'error_code': self.error_code,
            'field': self.field_name,
            'message': self.message,
            'request_id': self.request_id,
            'actor_id': self.actor_id,
            'context': self.context
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, default=str)


class AuditTrailLogger:
    """Writes audit entries as JSON lines to the 'audit' logger

    Handlers are only attached when a file or console output is requested;
    otherwise entries propagate to whatever the application configured.
    """

    def __init__(
        self,
        log_file: Optional[str] = None,
        log_level: int = logging.INFO,
        enable_console: bool = False,
        logger_name: str = "audit"
    ):
        """
        Args:
            log_file: Optional path of a dedicated audit log file
            log_level: Minimum log level to record
            enable_console: Also output to console
            logger_name: Name of the underlying logging.Logger
        """
        self.logger = logging.getLogger(logger_name)
        self.logger.setLevel(log_level)

        formatter = logging.Formatter('%(asctime)s - AUDIT - %(levelname)s - %(message)s')

        if log_file:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_path, encoding='utf-8')
            file_handler.setLevel(log_level)
            file_handler.setFormatter(formatter)
            self.logger.addHandler(file_handler)

        if enable_console:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(log_level)
            console_handler.setFormatter(formatter)
            self.logger.addHandler(console_handler)

        self._request_id: str = ""
        self._actor_id: str = ""

    def set_request_context(self, request_id: Optional[str] = None, actor_id: str = "") -> str:
        """Set correlation data attached to every following entry

        Returns:
            The request ID being used
        """
        self._request_id = request_id or f"REQ-{uuid.uuid4().hex[:8]}"
        self._actor_id = sanitize_for_logging(actor_id, max_length=100)
        return self._request_id

    def clear_request_context(self) -> None:
        self._request_id = ""
        self._actor_id = ""

    def _sanitize_context(self, context: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Sanitize every key and value of a context mapping, recursing into dicts"""
        if not context:
            return {}

        sanitized = {}
        for key, value in context.items():
            safe_key = sanitize_for_logging(key, max_length=100) or "unknown"
            if value is None or isinstance(value, (bool, int, float)):
                sanitized[safe_key] = value
            elif isinstance(value, dict):
                sanitized[safe_key] = self._sanitize_context(value)
            elif isinstance(value, (list, tuple)):
                sanitized[safe_key] = [
                    item if isinstance(item, (bool, int, float, type(None)))
                    else sanitize_for_logging(item, max_length=200)
                    for item in value
                ]
            else:
                sanitized[safe_key] = sanitize_for_logging(value, max_length=200)
        return sanitized

    def _emit(self, entry: AuditEntry) -> None:
        entry.request_id = self._request_id
        entry.actor_id = entry.actor_id or self._actor_id
        level = logging.WARNING if entry.severity == "WARNING" else logging.INFO
        self.logger.log(level, entry.to_json())

    def log_mutation(
        self,
        operation: str,
        subject_id: Any,
        record_id: Any,
        event_type: str,
        changed_fields: Iterable[str] = (),
        committed: bool = True,
        actor_id: Any = None
    ) -> None:
        """Log a mutation that wrote rows and appended one verification event

        committed=False marks work done on a caller-owned session that this
        package does not commit.
        """
        self._emit(AuditEntry(
            entry_type=MUTATION_COMMITTED if committed else MUTATION_STAGED,
            severity="INFO",
            operation=operation,
            subject_id=sanitize_for_logging(subject_id, max_length=100),
            record_id=sanitize_for_logging(record_id, max_length=100),
            event_type=event_type,
            changed_fields=sorted(changed_fields),
            actor_id=sanitize_for_logging(actor_id, max_length=100)
        ))

    def log_noop(self, operation: str, subject_id: Any, record_id: Any = None) -> None:
        """Log a mutation whose change set was empty"""
        self._emit(AuditEntry(
            entry_type=MUTATION_NOOP,
            severity="INFO",
            operation=operation,
            subject_id=sanitize_for_logging(subject_id, max_length=100),
            record_id=sanitize_for_logging(record_id, max_length=100)
        ))

    def log_failure(
        self,
        entry_type: str,
        operation: str,
        subject_id: Any,
        error_code: str,
        message: str,
        field: Optional[str] = None,
        additional_context: Optional[Dict[str, Any]] = None
    ) -> None:
        """Log a rejected mutation (VALIDATION_FAILED or LOOKUP_FAILED)"""
        self._emit(AuditEntry(
            entry_type=entry_type,
            severity="WARNING",
            operation=operation,
            subject_id=sanitize_for_logging(subject_id, max_length=100),
            error_code=error_code,
            field_name=sanitize_for_logging(field, max_length=100),
            message=sanitize_for_logging(message),
            context=self._sanitize_context(additional_context)
        ))


# Global audit logger instance
_audit_logger: Optional[AuditTrailLogger] = None


def get_audit_logger(log_file: Optional[str] = None, enable_console: bool = False) -> AuditTrailLogger:
    """Get or create the global audit logger instance"""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditTrailLogger(log_file=log_file, enable_console=enable_console)
    return _audit_logger


def reset_audit_logger() -> None:
    """Reset the global audit logger (for testing)"""
    global _audit_logger
    if _audit_logger is not None:
        for handler in list(_audit_logger.logger.handlers):
            _audit_logger.logger.removeHandler(handler)
            handler.close()
    _audit_logger = None
