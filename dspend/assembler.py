"""Assemble single-recipient unsigned transactions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from .aggregator import UTXOAggregator
from .config import DEFAULT_FEE_SATS
from .errors import InsufficientFunds, ValidationError
from .models import InputReference, OutputTarget, UnsignedTransactionDraft
from .node import Node
from .rpc_client import RPCError, format_rpc_hint
from .units import format_btc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssembledTransaction:
    draft: UnsignedTransactionDraft
    raw_tx: str
    generated_destination: bool = False


def request_new_address(node: Node) -> str:
    """Ask the node for a fresh address; the call cannot be undone, so it is always logged."""

    logger.info("Creating a new output address")
    address = node.get_new_address()
    logger.info("New output address: %s", address)
    return address


class TransactionAssembler:
    """Turn inputs plus one destination into an unsigned raw transaction."""

    def __init__(self, node: Node, default_fee_sats: int = DEFAULT_FEE_SATS) -> None:
        self.node = node
        self.default_fee_sats = default_fee_sats

    def resolve_fee(self, fee_sats: int) -> int:
        if fee_sats < 0:
            raise ValidationError(f"fee must not be negative: {fee_sats}")
        return fee_sats or self.default_fee_sats

    def submit(self, draft: UnsignedTransactionDraft) -> str:
        """Hand ``draft`` to the node's createrawtransaction call."""

        try:
            return self.node.create_raw_transaction(draft.inputs, draft.output)
        except RPCError as exc:
            hint = format_rpc_hint(exc)
            if hint:
                logger.error("createrawtransaction failed: %s (%s)", exc, hint)
            raise

    def assemble(
        self,
        inputs: Sequence[InputReference],
        destination: str,
        fee_sats: int,
        total_in_sats: int,
    ) -> AssembledTransaction:
        if not inputs:
            raise ValidationError("at least one input is required")
        fee = self.resolve_fee(fee_sats)
        amount = total_in_sats - fee
        if amount <= 0:
            raise InsufficientFunds(total_in_sats, fee)

        generated = not destination
        if generated:
            destination = request_new_address(self.node)

        draft = UnsignedTransactionDraft(
            inputs=list(inputs),
            output=OutputTarget(destination_address=destination, amount_sats=amount),
            fee_sats=fee,
            total_in_sats=total_in_sats,
        )
        raw_tx = self.submit(draft)
        return AssembledTransaction(draft=draft, raw_tx=raw_tx, generated_destination=generated)


def create_transaction(
    node: Node,
    source_address: str,
    destination: str = "",
    fee_sats: int = 0,
    *,
    default_fee_sats: int = DEFAULT_FEE_SATS,
) -> AssembledTransaction:
    """Spend every UTXO of ``source_address`` to ``destination`` minus ``fee_sats``."""

    input_set = UTXOAggregator(node).aggregate(source_address)
    assembled = TransactionAssembler(node, default_fee_sats).assemble(
        input_set.inputs, destination, fee_sats, input_set.total_in_sats
    )
    draft = assembled.draft
    logger.info("***transaction details***")
    logger.info("destination address:\t%s", draft.output.destination_address)
    logger.info("source address:\t\t%s", source_address)
    logger.info("inputs:\t\t\t%d", len(draft.inputs))
    logger.info("total input amount:\t%s", format_btc(draft.total_in_sats))
    logger.info("fee:\t\t\t%s", format_btc(draft.fee_sats))
    logger.info("output amount:\t\t%s", format_btc(draft.output.amount_sats))
    return assembled
