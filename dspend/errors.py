"""Error taxonomy shared by the dspend reconciliation and amendment engine."""

from __future__ import annotations


class DSpendError(RuntimeError):
    """Base class for every failure that aborts a dspend command."""


class ValidationError(DSpendError):
    """Raised when required input is missing or a transaction shape is unsupported."""


class CollaboratorError(DSpendError):
    """Raised when the node or the explorer cannot complete a request."""


class ReconciliationError(DSpendError):
    """Raised when input values cannot be reconciled into a consistent fee."""


class InsufficientFunds(DSpendError):
    """Raised when the aggregated inputs cannot cover the fee."""

    def __init__(self, total_in_sats: int, fee_sats: int) -> None:
        super().__init__(
            f"insufficient funds: total input {total_in_sats} sats does not cover fee {fee_sats} sats"
        )
        self.total_in_sats = total_in_sats
        self.fee_sats = fee_sats


class InvalidAmount(DSpendError):
    """Raised when an amended output amount would be zero or negative."""

    def __init__(self, total_in_sats: int, fee_sats: int) -> None:
        super().__init__(
            f"invalid amount/fee: {total_in_sats} - {fee_sats} = {total_in_sats - fee_sats} sats"
        )
        self.total_in_sats = total_in_sats
        self.fee_sats = fee_sats
