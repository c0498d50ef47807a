"""
Structured logging for ledger, registry and replication operations.
"""

import logging
from typing import Any, Dict, List

SENSITIVE_FIELDS = ['token', 'secret', 'key', 'auth', 'auth_material', 'password']


class StructuredLogger:
    """Structured logger for record, remote and sync operations."""

    def __init__(self, name: str = "viphash"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def set_level(self, level: int) -> None:
        """Change the level of the underlying logger."""
        self.logger.setLevel(level)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {sanitize_payload(details)}"

        if status in ("failed", "error"):
            self.logger.warning(message)
        else:
            self.logger.info(message)

    def log_record_operation(self, operation: str, address: str, reviewer: str, status: str = "success",
                             details: Dict[str, Any] = None):
        """Log a ledger record operation."""
        log_details = {"address": address[:12], "reviewer": reviewer}
        if details:
            log_details.update(details)

        self.log_operation(f"record.{operation}", status, log_details)

    def log_remote_operation(self, operation: str, name: str, status: str = "success",
                             details: Dict[str, Any] = None):
        """Log a remote registry operation."""
        log_details = {"remote": name}
        if details:
            log_details.update(details)

        self.log_operation(f"remote.{operation}", status, log_details)

    def log_sync_phase(self, phase: str, remote: str, start_time: float, end_time: float,
                       status: str = "success", details: Dict[str, Any] = None):
        """Log one phase of a replication cycle."""
        duration_ms = round((end_time - start_time) * 1000, 2)
        log_details = {"remote": remote, "duration_ms": duration_ms}
        if details:
            log_details.update(details)
        elif status == "success":
            log_details["message"] = f"Sync phase '{phase}' completed in {duration_ms}ms"
        elif status == "failed":
            log_details["message"] = f"Sync phase '{phase}' failed after {duration_ms}ms"

        self.log_operation(f"sync.{phase}", status, log_details)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


def sanitize_payload(payload: Any, reveal_sensitive: bool = False, sensitive_fields: List[str] = None) -> Any:
    """Sanitize payloads for logging."""
    if sensitive_fields is None:
        sensitive_fields = SENSITIVE_FIELDS

    if isinstance(payload, dict):
        sanitized = {}
        for k, v in payload.items():
            if reveal_sensitive or k not in sensitive_fields:
                sanitized[k] = sanitize_payload(v, reveal_sensitive, sensitive_fields)
            else:
                sanitized[k] = "[REDACTED]"
        return sanitized
    elif isinstance(payload, str):
        # Truncate long strings
        return payload[:100] + "..." if len(payload) > 100 else payload
    elif isinstance(payload, list):
        return [sanitize_payload(item, reveal_sensitive, sensitive_fields) for item in payload]
    else:
        return payload


# Global logger instance
logger = StructuredLogger()
