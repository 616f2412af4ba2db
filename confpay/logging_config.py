"""
Structured logging configuration.

JSON lines in production so payment events can be searched by field
(registration_id, payment_reference, provider_transaction_id); plain text
in development. Configured secrets never reach a log line.
"""

import sys
import logging
import json
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from confpay.config import Settings, settings

# Keys callers may pass through `extra=` to tag a log line
CONTEXT_FIELDS = ("registration_id", "payment_id", "payment_reference", "provider_transaction_id")

REDACTED = "[redacted]"


class JSONFormatter(logging.Formatter):
    """Format log records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
        }
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


class SecretFilter(logging.Filter):
    """Masks known secret values in the rendered message."""

    def __init__(self, secrets: Iterable[str]):
        super().__init__()
        # Short values would mask unrelated text
        self.secrets = sorted({s for s in secrets if s and len(s) >= 6}, key=len, reverse=True)

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.secrets:
            return True
        message = record.getMessage()
        masked = message
        for secret in self.secrets:
            masked = masked.replace(secret, REDACTED)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


def secrets_from(config: Settings) -> Iterable[str]:
    return (
        config.onepay_app_token,
        config.onepay_hash_salt,
        config.qr_signing_secret,
        config.mail_api_key,
        config.admin_api_key,
    )


def configure_logging(config: Optional[Settings] = None) -> None:
    """Install a single stdout handler on the root logger."""
    config = config or settings
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO if config.is_production else logging.DEBUG)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    if config.is_production:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
    handler.addFilter(SecretFilter(secrets_from(config)))
    root_logger.addHandler(handler)

    # Noisy libraries
    for name in ("uvicorn.access", "sqlalchemy.engine", "httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)
