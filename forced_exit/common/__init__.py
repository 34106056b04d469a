from .async_utils import backoff_seconds, guarded_call, wait_with_stop
from .logging import log_event, sanitize_text, sanitize_value

__all__ = [
    "backoff_seconds",
    "guarded_call",
    "log_event",
    "sanitize_text",
    "sanitize_value",
    "wait_with_stop",
]
