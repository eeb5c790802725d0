"""Fee reconciliation and amendment for single-recipient bitcoin transactions."""

from .aggregator import InputSet, UTXOAggregator
from .amendment import (
    AmendmentResult,
    AmendmentState,
    LayeredDecisions,
    PromptDecisions,
    ScriptedDecisions,
    TransactionAmendment,
    amend_transaction,
)
from .assembler import AssembledTransaction, TransactionAssembler, create_transaction
from .broadcast import SigningError, sign_and_send, sign_transaction
from .errors import (
    CollaboratorError,
    DSpendError,
    InsufficientFunds,
    InvalidAmount,
    ReconciliationError,
    ValidationError,
)
from .models import (
    ExternalOutput,
    ExternalTxRecord,
    InputReference,
    OutputTarget,
    ReconciledInput,
    UnsignedTransactionDraft,
    UnspentOutput,
)
from .node import Node
from .reconciler import Reconciliation, TransactionSummary, ValueReconciler, summarize_transaction
from .units import format_btc, to_btc, to_satoshi

__all__ = [
    "AmendmentResult",
    "AmendmentState",
    "AssembledTransaction",
    "CollaboratorError",
    "DSpendError",
    "ExternalOutput",
    "ExternalTxRecord",
    "InputReference",
    "InputSet",
    "InsufficientFunds",
    "InvalidAmount",
    "LayeredDecisions",
    "Node",
    "OutputTarget",
    "PromptDecisions",
    "ReconciledInput",
    "Reconciliation",
    "ReconciliationError",
    "ScriptedDecisions",
    "SigningError",
    "TransactionAmendment",
    "TransactionAssembler",
    "TransactionSummary",
    "UTXOAggregator",
    "UnsignedTransactionDraft",
    "UnspentOutput",
    "ValidationError",
    "ValueReconciler",
    "amend_transaction",
    "create_transaction",
    "format_btc",
    "sign_and_send",
    "sign_transaction",
    "summarize_transaction",
    "to_btc",
    "to_satoshi",
]
