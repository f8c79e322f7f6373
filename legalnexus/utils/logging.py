"""
Logging configuration with request_id correlation.
Structured logging for Cloud Logging compatibility.

PII Protection:
- Never log raw phone numbers, chat ids, access tokens or document content
- Use fingerprints (sha256[:8]) for correlation
- Phones go through mask_phone(), chat ids and tokens through fingerprint()
"""
import hashlib
import logging
import sys
import uuid
import json
from contextvars import ContextVar
from typing import Optional
from datetime import datetime, timezone

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


def fingerprint(value: Optional[str], prefix: str = "") -> str:
    """
    Create a safe fingerprint for logging PII values.

    Args:
        value: The sensitive value to fingerprint (chat id, token, phone, etc.)
        prefix: Optional prefix for the fingerprint (e.g., "chat_", "tok_")

    Returns:
        8-char hex fingerprint with optional prefix, or "none" if value is None/empty

    Example:
        fingerprint("972501234567@c.us", "chat_") -> "chat_a1b2c3d4"
    """
    if not value:
        return f"{prefix}none" if prefix else "none"
    fp = hashlib.sha256(value.encode()).hexdigest()[:8]
    return f"{prefix}{fp}" if prefix else fp


def mask_phone(phone: Optional[str]) -> str:
    """Mask phone for safe logging: 972501234567 -> ***4567"""
    if not phone:
        return "***"
    return "***" + phone[-4:] if len(phone) >= 4 else "***"


# Context variables for request correlation
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
chat_fp_var: ContextVar[Optional[str]] = ContextVar("chat_fp", default=None)
message_id_var: ContextVar[Optional[str]] = ContextVar("message_id", default=None)
company_id_var: ContextVar[Optional[str]] = ContextVar("company_id", default=None)
signing_request_id_var: ContextVar[Optional[str]] = ContextVar("signing_request_id", default=None)
token_fp_var: ContextVar[Optional[str]] = ContextVar("token_fp", default=None)

_CONTEXT_FIELDS = (
    ("chat_fp", chat_fp_var),
    ("message_id", message_id_var),
    ("company_id", company_id_var),
    ("signing_request_id", signing_request_id_var),
    ("token_fp", token_fp_var),
)


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def set_request_id(request_id: str) -> None:
    request_id_var.set(request_id)


def set_context(
    chat_fp: Optional[str] = None,
    message_id: Optional[str] = None,
    company_id: Optional[str] = None,
    signing_request_id: Optional[str] = None,
    token_fp: Optional[str] = None,
) -> None:
    """
    Set logging context variables.

    Args:
        chat_fp: WhatsApp chat fingerprint (already hashed, safe to log)
        message_id: Provider message id (safe to log)
        company_id: Company UUID (safe to log)
        signing_request_id: Signing request UUID (safe to log)
        token_fp: Access token fingerprint (already hashed, safe to log)
    """
    if chat_fp:
        chat_fp_var.set(chat_fp)
    if message_id:
        message_id_var.set(message_id)
    if company_id:
        company_id_var.set(company_id)
    if signing_request_id:
        signing_request_id_var.set(signing_request_id)
    if token_fp:
        token_fp_var.set(token_fp)


def clear_context() -> None:
    """Clear all context variables."""
    request_id_var.set(None)
    for _, var in _CONTEXT_FIELDS:
        var.set(None)


class CloudLoggingFormatter(logging.Formatter):
    """
    Formatter for Google Cloud Logging structured logs.
    Outputs JSON format compatible with Cloud Logging.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "severity": record.levelname,
            "message": record.getMessage(),
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "logging.googleapis.com/sourceLocation": {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            },
        }

        request_id = request_id_var.get()
        if request_id:
            log_entry["logging.googleapis.com/trace"] = request_id
            log_entry["request_id"] = request_id

        for key, var in _CONTEXT_FIELDS:
            value = var.get()
            if value:
                log_entry[key] = value

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False)


class DevelopmentFormatter(logging.Formatter):
    """Human-readable formatter for local development."""

    def format(self, record: logging.LogRecord) -> str:
        request_id = request_id_var.get()
        prefix = f"[{record.levelname}] [{request_id[:8] if request_id else '-'}]"

        chat_fp = chat_fp_var.get()
        if chat_fp:
            prefix += f" [chat:{chat_fp}]"
        message_id = message_id_var.get()
        if message_id:
            prefix += f" [msg:{message_id[:12]}]"
        company_id = company_id_var.get()
        if company_id:
            prefix += f" [co:{company_id[:8]}]"
        signing_request_id = signing_request_id_var.get()
        if signing_request_id:
            prefix += f" [sr:{signing_request_id[:8]}]"
        token_fp = token_fp_var.get()
        if token_fp:
            prefix += f" [tok:{token_fp}]"

        message = f"{prefix} {record.getMessage()}"
        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)
        return message


def setup_logging(environment: str = "development", level: int = logging.INFO) -> None:
    """
    Configure logging based on environment.
    - production: JSON structured logs for Cloud Logging
    - development: Human-readable format
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    if environment == "production":
        handler.setFormatter(CloudLoggingFormatter())
    else:
        handler.setFormatter(DevelopmentFormatter())

    root_logger.addHandler(handler)

    # Reduce noise from third-party libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("google").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("hpack").setLevel(logging.WARNING)


class RequestIdMiddleware(BaseHTTPMiddleware):
    """
    Assigns X-Request-ID (incoming header or uuid4) and picks the signing
    request id out of org routes. Context is cleared when the request ends.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        set_request_id(request_id)

        path_parts = request.url.path.split("/")
        for i, part in enumerate(path_parts):
            if part == "signing-requests" and i + 1 < len(path_parts):
                candidate = path_parts[i + 1]
                if candidate and candidate != "upload-url":
                    signing_request_id_var.set(candidate)
                break

        request.state.request_id = request_id

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            clear_context()


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name."""
    return logging.getLogger(name)
