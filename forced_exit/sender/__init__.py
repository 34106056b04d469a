from .builder import ForcedExitTransactionBuilder
from .codec import decode_amount, validate_digits_in_id
from .context import KeypairSigner, SenderContext, bootstrap_sender_context, parse_private_key
from .orchestrator import ForcedExitSender
from .reconciler import UnconfirmedRequestReconciler
from .tracker import SubmissionTracker
from .types import (
    ConfirmationFailedError,
    ConfirmationTimeoutError,
    ForcedExitConfigError,
    ForcedExitError,
    ForcedExitRequest,
    FulfillmentConflictError,
    PaymentEvent,
    ReceiptLookupError,
    ReconciliationSummary,
    SenderAccountState,
    SenderStateUnavailableError,
    SignedExitTransaction,
    SubmissionError,
    SubmissionRejectedError,
    SubmissionTransportError,
    TransactionSigningError,
    TxReceipt,
)
from .validator import should_fulfill
from .zksync_client import ZkSyncApiClient, ZkSyncApiError, ZkSyncTransportError

__all__ = [
    "ConfirmationFailedError",
    "ConfirmationTimeoutError",
    "ForcedExitConfigError",
    "ForcedExitError",
    "ForcedExitRequest",
    "ForcedExitSender",
    "ForcedExitTransactionBuilder",
    "FulfillmentConflictError",
    "KeypairSigner",
    "PaymentEvent",
    "ReceiptLookupError",
    "ReconciliationSummary",
    "SenderAccountState",
    "SenderContext",
    "SenderStateUnavailableError",
    "SignedExitTransaction",
    "SubmissionError",
    "SubmissionRejectedError",
    "SubmissionTracker",
    "SubmissionTransportError",
    "TransactionSigningError",
    "TxReceipt",
    "UnconfirmedRequestReconciler",
    "ZkSyncApiClient",
    "ZkSyncApiError",
    "ZkSyncTransportError",
    "bootstrap_sender_context",
    "decode_amount",
    "parse_private_key",
    "should_fulfill",
    "validate_digits_in_id",
]
