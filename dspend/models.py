"""Data model for transaction drafts, reconciled inputs, and external records.

All monetary fields are integer satoshis. Display amounts (BTC) only appear on
:class:`UnspentOutput`, which mirrors what the node reports, and are converted
with :mod:`dspend.units` before any arithmetic happens.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List

from .units import format_btc, to_satoshi


@dataclass(frozen=True)
class UnspentOutput:
    """A spendable output as listed by the node."""

    address: str
    txid: str
    vout: int
    amount: Decimal
    spendable: bool = True

    @property
    def amount_sats(self) -> int:
        return to_satoshi(self.amount)

    @classmethod
    def from_rpc(cls, entry: Dict[str, Any]) -> "UnspentOutput":
        return cls(
            address=str(entry.get("address", "")),
            txid=str(entry["txid"]),
            vout=int(entry["vout"]),
            amount=Decimal(str(entry["amount"])),
            spendable=bool(entry.get("spendable", True)),
        )


@dataclass(frozen=True)
class InputReference:
    """Reference to a prior output being spent."""

    txid: str
    vout: int

    def to_rpc(self) -> Dict[str, Any]:
        return {"txid": self.txid, "vout": self.vout}

    def __str__(self) -> str:
        return f"{self.txid}:{self.vout}"


@dataclass(frozen=True)
class ReconciledInput:
    """An input reference with the value recovered from the explorer."""

    reference: InputReference
    value_sats: int
    owner_address: str


@dataclass(frozen=True)
class OutputTarget:
    destination_address: str
    amount_sats: int

    def to_rpc(self) -> Dict[str, str]:
        # Amounts go over the wire as exact eight-decimal strings.
        return {self.destination_address: format_btc(self.amount_sats)}


@dataclass(frozen=True)
class UnsignedTransactionDraft:
    """Single-recipient draft; ``fee == total_in - output amount``."""

    inputs: List[InputReference]
    output: OutputTarget
    fee_sats: int
    total_in_sats: int

    def __post_init__(self) -> None:
        if self.fee_sats < 0 or self.total_in_sats < 0 or self.output.amount_sats < 0:
            raise ValueError("draft amounts must be non-negative")
        if self.total_in_sats - self.output.amount_sats != self.fee_sats:
            raise ValueError(
                "draft is inconsistent: inputs must equal output plus fee "
                f"({self.total_in_sats} != {self.output.amount_sats} + {self.fee_sats})"
            )


@dataclass(frozen=True)
class ExternalOutput:
    addresses: List[str]
    value_sats: int


@dataclass(frozen=True)
class ExternalTxRecord:
    """Transaction record as published by the explorer."""

    outputs: List[ExternalOutput] = field(default_factory=list)
    error: str | None = None


@dataclass(frozen=True)
class DecodedOutput:
    value_sats: int
    destination_address: str
    index: int = 0


@dataclass(frozen=True)
class DecodedTransaction:
    """Structural view of a raw transaction; inputs carry no values."""

    txid: str
    inputs: List[InputReference]
    outputs: List[DecodedOutput]

    @property
    def total_out_sats(self) -> int:
        return sum(output.value_sats for output in self.outputs)


@dataclass(frozen=True)
class SignError:
    txid: str
    vout: int | None
    error: str


@dataclass(frozen=True)
class SignResult:
    hex: str
    complete: bool
    errors: List[SignError] = field(default_factory=list)
