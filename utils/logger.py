"""
Logging utility functions and helpers.
"""

import logging
from contextvars import ContextVar
from typing import Any, Dict, Optional

# Request id of the request being handled in the current task
request_id_var: ContextVar[str] = ContextVar("request_id", default="-")


class RequestIDFilter(logging.Filter):
    """
    Stamps every record with the current request id.

    Attached to the handlers in setup_logging, so it also covers records
    from third-party loggers.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = request_id_var.get()
        return True


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Usage:
        from utils.logger import get_logger
        logger = get_logger(__name__)
    """
    return logging.getLogger(name)


def sanitize_log_data(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Remove sensitive information from log data.

    Args:
        data: Dictionary that may contain sensitive fields

    Returns:
        Sanitized dictionary safe for logging
    """
    sensitive_fields = {
        'password', 'token', 'secret', 'api_key', 'access_token',
        'refresh_token', 'hash'
    }

    sanitized = data.copy()

    for key, value in sanitized.items():
        # Check if key contains sensitive field name (case-insensitive)
        if any(sensitive in key.lower() for sensitive in sensitive_fields):
            if isinstance(value, str):
                # For tokens, show first 8 chars for debugging
                if 'token' in key.lower() and len(value) > 8:
                    sanitized[key] = f"{value[:8]}..."
                else:
                    sanitized[key] = "***REDACTED***"

        # Recursively sanitize nested dictionaries
        elif isinstance(value, dict):
            sanitized[key] = sanitize_log_data(value)

    return sanitized


def log_request(
    logger: logging.Logger,
    method: str,
    path: str,
    status_code: int,
    duration_ms: float,
    client_ip: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None
):
    """
    Log HTTP request in a structured format.

    The level follows the status code: 5xx error, 4xx warning, else info.

    Usage:
        log_request(logger, "POST", "/auth/token", 200, 45.2, client_ip="10.0.0.1")
    """
    log_data = {
        "http_method": method,
        "path": path,
        "status_code": status_code,
        "duration_ms": round(duration_ms, 2),
    }

    if client_ip:
        log_data["client_ip"] = client_ip

    if extra:
        log_data.update(sanitize_log_data(extra))

    message = f'{client_ip or "unknown"} - "{method} {path} HTTP/1.1" {status_code}'
    if status_code >= 500:
        logger.error(message, extra=log_data)
    elif status_code >= 400:
        logger.warning(message, extra=log_data)
    else:
        logger.info(message, extra=log_data)
