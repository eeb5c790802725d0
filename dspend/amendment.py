"""Amend the fee and/or destination of an existing unsigned transaction.

The amendment walks a fixed sequence of states::

    PENDING -> DECODED -> RECONCILED -> FEE_DECIDED -> DESTINATION_DECIDED -> REASSEMBLED

Each step requires the previous one. The inputs of the original transaction
are never changed; only the single output is rebuilt so that
``total_in == new_amount + fee`` holds again. Operator choices come from a
:class:`DecisionSource`, which keeps the machine itself free of console I/O.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Protocol

from .assembler import TransactionAssembler, request_new_address
from .errors import InvalidAmount, ReconciliationError, ValidationError
from .models import DecodedOutput, DecodedTransaction, OutputTarget, UnsignedTransactionDraft
from .node import Node
from .reconciler import TransactionSummary, ValueReconciler
from .units import format_btc

logger = logging.getLogger(__name__)


class AmendmentState(Enum):
    PENDING = 0
    DECODED = 1
    RECONCILED = 2
    FEE_DECIDED = 3
    DESTINATION_DECIDED = 4
    REASSEMBLED = 5


class DecisionSource(Protocol):
    def choose_fee(self, previous_fee_sats: int) -> int | None:
        """Return a new fee in sats, or ``None`` to keep the previous fee."""

    def choose_new_destination(self, current_destination: str) -> bool:
        """Return ``True`` to replace the destination with a fresh node address."""


@dataclass
class ScriptedDecisions:
    """Fixed answers; the defaults keep both fee and destination."""

    fee_sats: int | None = None
    new_destination: bool = False

    def choose_fee(self, previous_fee_sats: int) -> int | None:
        return self.fee_sats

    def choose_new_destination(self, current_destination: str) -> bool:
        return self.new_destination


class PromptDecisions:
    """Ask the operator with y/n prompts."""

    def __init__(
        self,
        input_func: Callable[[str], str] | None = None,
        write: Callable[[str], None] | None = None,
    ) -> None:
        self._input_func = input_func
        self._write_func = write

    # Builtins are looked up per call so a replaced input()/print() is honoured.
    def _input(self, prompt: str) -> str:
        return (self._input_func or input)(prompt)

    def _write(self, message: str) -> None:
        (self._write_func or print)(message)

    def _confirm(self, prompt: str) -> bool:
        return self._input(prompt).strip().lower().startswith("y")

    def choose_fee(self, previous_fee_sats: int) -> int | None:
        if not self._confirm(
            f"\nCurrent fee is {previous_fee_sats} sats. Do you want to modify the fee? (y/n): "
        ):
            return None
        while True:
            raw = self._input("Enter the new fee (in Satoshis): ").strip()
            try:
                fee = int(raw)
            except ValueError:
                self._write("Invalid integer, please try again.")
                continue
            if fee < 0:
                self._write("The fee must not be negative.")
                continue
            return fee

    def choose_new_destination(self, current_destination: str) -> bool:
        return self._confirm(
            f"\nCurrent destination is {current_destination}. "
            "Do you want to modify the destination address? (y/n): "
        )


@dataclass
class LayeredDecisions:
    """Use fixed answers where given and defer the rest to ``fallback``."""

    fallback: DecisionSource
    fee_sats: int | None = None
    keep_fee: bool = False
    new_destination: bool | None = None

    def choose_fee(self, previous_fee_sats: int) -> int | None:
        if self.fee_sats is not None:
            return self.fee_sats
        if self.keep_fee:
            return None
        return self.fallback.choose_fee(previous_fee_sats)

    def choose_new_destination(self, current_destination: str) -> bool:
        if self.new_destination is not None:
            return self.new_destination
        return self.fallback.choose_new_destination(current_destination)


@dataclass(frozen=True)
class AmendmentResult:
    raw_tx: str
    draft: UnsignedTransactionDraft
    previous_fee_sats: int
    previous_destination: str
    generated_destination: bool
    summary: TransactionSummary


class TransactionAmendment:
    """Single-use state machine amending one unsigned transaction."""

    def __init__(
        self,
        node: Node,
        reconciler: ValueReconciler,
        decisions: DecisionSource,
        raw_tx: str,
        source_address: str,
    ) -> None:
        self.node = node
        self.reconciler = reconciler
        self.decisions = decisions
        self.raw_tx = raw_tx
        self.source_address = source_address
        self.state = AmendmentState.PENDING

        self.decoded: DecodedTransaction | None = None
        self.summary: TransactionSummary | None = None
        self.previous_output: DecodedOutput | None = None
        self.previous_fee_sats: int | None = None
        self.fee_sats: int | None = None
        self.destination: str | None = None
        self.generated_destination = False
        self.result: AmendmentResult | None = None

    def _require(self, expected: AmendmentState, step: str) -> None:
        if self.state is not expected:
            raise RuntimeError(f"cannot {step} in state {self.state.name}; expected {expected.name}")

    def decode(self) -> DecodedTransaction:
        self._require(AmendmentState.PENDING, "decode")
        if not self.raw_tx:
            raise ValidationError("raw transaction hex required")
        if not self.source_address:
            raise ValidationError("source address required")

        decoded = self.node.decode_raw_transaction(self.raw_tx)
        if len(decoded.outputs) != 1:
            raise ValidationError(
                f"only single-recipient transactions can be amended; found {len(decoded.outputs)} outputs"
            )
        self.decoded = decoded
        self.previous_output = decoded.outputs[0]
        self.state = AmendmentState.DECODED
        return decoded

    def reconcile(self) -> TransactionSummary:
        self._require(AmendmentState.DECODED, "reconcile")
        assert self.decoded is not None and self.previous_output is not None

        reconciliation = self.reconciler.reconcile(self.decoded.inputs, self.source_address)
        previous_fee = reconciliation.total_in_sats - self.previous_output.value_sats
        if previous_fee < 0:
            raise ReconciliationError(
                f"reconciled inputs ({reconciliation.total_in_sats} sats) are less than the existing "
                f"output ({self.previous_output.value_sats} sats)"
            )
        self.summary = TransactionSummary(
            txid=self.decoded.txid,
            source_address=self.source_address,
            inputs=reconciliation.inputs,
            outputs=self.decoded.outputs,
            total_in_sats=reconciliation.total_in_sats,
            total_out_sats=self.decoded.total_out_sats,
            unmatched=reconciliation.unmatched,
        )
        self.previous_fee_sats = previous_fee
        self.state = AmendmentState.RECONCILED
        return self.summary

    def decide_fee(self) -> int:
        self._require(AmendmentState.RECONCILED, "decide fee")
        assert self.summary is not None and self.previous_fee_sats is not None

        chosen = self.decisions.choose_fee(self.previous_fee_sats)
        fee = self.previous_fee_sats if chosen is None else int(chosen)
        if fee < 0:
            raise ValidationError(f"fee must not be negative: {fee}")
        # Fail before a new address could be requested.
        if self.summary.total_in_sats - fee <= 0:
            raise InvalidAmount(self.summary.total_in_sats, fee)
        self.fee_sats = fee
        self.state = AmendmentState.FEE_DECIDED
        return fee

    def decide_destination(self) -> str:
        self._require(AmendmentState.FEE_DECIDED, "decide destination")
        assert self.previous_output is not None

        destination = self.previous_output.destination_address
        if self.decisions.choose_new_destination(destination):
            destination = request_new_address(self.node)
            self.generated_destination = True
        if not destination:
            raise ValidationError("existing output has no destination address; request a new one")
        self.destination = destination
        self.state = AmendmentState.DESTINATION_DECIDED
        return destination

    def reassemble(self) -> AmendmentResult:
        self._require(AmendmentState.DESTINATION_DECIDED, "reassemble")
        assert self.summary is not None and self.decoded is not None
        assert self.fee_sats is not None and self.destination is not None
        assert self.previous_output is not None and self.previous_fee_sats is not None

        total_in = self.summary.total_in_sats
        new_amount = total_in - self.fee_sats
        if new_amount <= 0:
            raise InvalidAmount(total_in, self.fee_sats)

        draft = UnsignedTransactionDraft(
            inputs=list(self.decoded.inputs),
            output=OutputTarget(destination_address=self.destination, amount_sats=new_amount),
            fee_sats=self.fee_sats,
            total_in_sats=total_in,
        )
        logger.info(
            "Reassembling: fee %s -> %s, output %s -> %s to %s",
            format_btc(self.previous_fee_sats),
            format_btc(self.fee_sats),
            format_btc(self.previous_output.value_sats),
            format_btc(new_amount),
            self.destination,
        )
        raw_tx = TransactionAssembler(self.node).submit(draft)
        self.result = AmendmentResult(
            raw_tx=raw_tx,
            draft=draft,
            previous_fee_sats=self.previous_fee_sats,
            previous_destination=self.previous_output.destination_address,
            generated_destination=self.generated_destination,
            summary=self.summary,
        )
        self.state = AmendmentState.REASSEMBLED
        return self.result

    def run(self, on_reconciled: Callable[[TransactionSummary], None] | None = None) -> AmendmentResult:
        self.decode()
        summary = self.reconcile()
        if on_reconciled is not None:
            on_reconciled(summary)
        self.decide_fee()
        self.decide_destination()
        return self.reassemble()


def amend_transaction(
    node: Node,
    reconciler: ValueReconciler,
    raw_tx: str,
    source_address: str,
    decisions: DecisionSource | None = None,
    on_reconciled: Callable[[TransactionSummary], None] | None = None,
) -> AmendmentResult:
    """Convenience wrapper running a full amendment."""

    amendment = TransactionAmendment(
        node, reconciler, decisions or ScriptedDecisions(), raw_tx, source_address
    )
    return amendment.run(on_reconciled)
