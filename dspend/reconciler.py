"""Recover input values that a raw transaction does not carry.

A raw transaction only references its inputs by ``(txid, vout)``. To work out
the fee we look up each referenced transaction on the explorer and take the
value of the output that belongs to the expected owner address.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Protocol, Sequence

from .errors import ReconciliationError, ValidationError
from .models import (
    DecodedOutput,
    DecodedTransaction,
    ExternalTxRecord,
    InputReference,
    ReconciledInput,
)
from .node import Node

logger = logging.getLogger(__name__)


class TransactionExplorer(Protocol):
    def get_transaction_record(self, network: str, txid: str) -> ExternalTxRecord:
        ...


@dataclass(frozen=True)
class Reconciliation:
    inputs: List[ReconciledInput]
    total_in_sats: int
    unmatched: List[InputReference] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.unmatched)


def match_output_value(record: ExternalTxRecord, reference: InputReference, owner_address: str) -> int | None:
    """Return the value of the output of ``record`` owned by ``owner_address``.

    The output at ``reference.vout`` wins when the owner is among its
    addresses; otherwise the first output listing the owner anywhere in its
    address set is used. ``None`` means no output matched.
    """

    outputs = record.outputs
    if 0 <= reference.vout < len(outputs) and owner_address in outputs[reference.vout].addresses:
        return outputs[reference.vout].value_sats
    for output in outputs:
        if owner_address in output.addresses:
            return output.value_sats
    return None


class ValueReconciler:
    """Look up explorer records and attach values to input references."""

    def __init__(self, explorer: TransactionExplorer, network: str = "main", max_workers: int = 1) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.explorer = explorer
        self.network = network
        self.max_workers = max_workers

    def _fetch(self, txid: str) -> ExternalTxRecord:
        record = self.explorer.get_transaction_record(self.network, txid)
        if record.error:
            raise ReconciliationError(f"explorer reported an error for {txid}: {record.error}")
        return record

    def fetch_records(self, txids: Iterable[str]) -> Dict[str, ExternalTxRecord]:
        """Fetch one record per distinct txid; every fetch completes or the call fails."""

        unique = list(dict.fromkeys(txids))
        if self.max_workers == 1 or len(unique) <= 1:
            records = [self._fetch(txid) for txid in unique]
        else:
            with ThreadPoolExecutor(max_workers=min(self.max_workers, len(unique))) as executor:
                records = list(executor.map(self._fetch, unique))
        return dict(zip(unique, records))

    def reconcile(self, inputs: Sequence[InputReference], owner_address: str) -> Reconciliation:
        if not owner_address:
            raise ValidationError("source address required")

        records = self.fetch_records(reference.txid for reference in inputs)
        reconciled: List[ReconciledInput] = []
        unmatched: List[InputReference] = []
        for reference in inputs:
            value = match_output_value(records[reference.txid], reference, owner_address)
            if value is None:
                unmatched.append(reference)
                value = 0
            reconciled.append(ReconciledInput(reference=reference, value_sats=value, owner_address=owner_address))

        if unmatched:
            logger.warning(
                "Partial reconciliation: no output owned by %s found for %s; these inputs count as 0",
                owner_address,
                ", ".join(str(reference) for reference in unmatched),
            )
        total_in_sats = sum(item.value_sats for item in reconciled)
        return Reconciliation(inputs=reconciled, total_in_sats=total_in_sats, unmatched=unmatched)


@dataclass(frozen=True)
class TransactionSummary:
    txid: str
    source_address: str
    inputs: List[ReconciledInput]
    outputs: List[DecodedOutput]
    total_in_sats: int
    total_out_sats: int
    unmatched: List[InputReference] = field(default_factory=list)

    @property
    def fee_sats(self) -> int:
        return self.total_in_sats - self.total_out_sats


def summarize_transaction(
    node: Node, reconciler: ValueReconciler, raw_tx: str, source_address: str
) -> tuple[DecodedTransaction, TransactionSummary]:
    """Decode ``raw_tx`` and reconcile its inputs against ``source_address``."""

    if not raw_tx:
        raise ValidationError("raw transaction hex required")
    if not source_address:
        raise ValidationError("source address required")

    decoded = node.decode_raw_transaction(raw_tx)
    reconciliation = reconciler.reconcile(decoded.inputs, source_address)
    summary = TransactionSummary(
        txid=decoded.txid,
        source_address=source_address,
        inputs=reconciliation.inputs,
        outputs=decoded.outputs,
        total_in_sats=reconciliation.total_in_sats,
        total_out_sats=decoded.total_out_sats,
        unmatched=reconciliation.unmatched,
    )
    return decoded, summary
