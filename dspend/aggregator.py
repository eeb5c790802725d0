"""Collect every spendable output of a source address into an input set."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List

from .errors import ValidationError
from .models import InputReference, UnspentOutput
from .node import Node
from .units import format_btc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InputSet:
    inputs: List[InputReference]
    total_in_sats: int
    utxos: List[UnspentOutput]


class UTXOAggregator:
    """Resolve a source address into inputs and their total value."""

    def __init__(self, node: Node) -> None:
        self.node = node

    def aggregate(self, source_address: str) -> InputSet:
        if not source_address:
            raise ValidationError("source address required")

        utxos = self.node.list_spendable_outputs([source_address])
        if not utxos:
            logger.warning("No spendable outputs found for %s", source_address)
            raise ValidationError(f"no unspent transactions for source address {source_address}")

        logger.info("Using %d unspent outputs found in %s", len(utxos), source_address)
        inputs: List[InputReference] = []
        total_in_sats = 0
        for utxo in utxos:
            inputs.append(InputReference(txid=utxo.txid, vout=utxo.vout))
            total_in_sats += utxo.amount_sats
            logger.info("  %s:%d\t%s", utxo.txid, utxo.vout, format_btc(utxo.amount_sats))
        return InputSet(inputs=inputs, total_in_sats=total_in_sats, utxos=utxos)
