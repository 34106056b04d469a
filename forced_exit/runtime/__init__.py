from .logging import setup_logger
from .loop import bootstrap_dependencies, handle_payment_event, run_intake_loop, run_reconcile_loop
from .settings import AppSettings

__all__ = [
    "AppSettings",
    "bootstrap_dependencies",
    "handle_payment_event",
    "run_intake_loop",
    "run_reconcile_loop",
    "setup_logger",
]
