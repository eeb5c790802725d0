"""Typed adapter over a node transport.

:class:`Node` is the only place that knows the JSON shapes Bitcoin Core
returns. Everything above it works with :mod:`dspend.models`.
"""

from __future__ import annotations

import logging
from decimal import InvalidOperation
from typing import Any, Dict, Iterable, List

from .errors import CollaboratorError, ValidationError
from .models import (
    DecodedOutput,
    DecodedTransaction,
    InputReference,
    OutputTarget,
    SignError,
    SignResult,
    UnspentOutput,
)
from .rpc_client import NodeRPCMethods
from .units import to_satoshi

logger = logging.getLogger(__name__)

# Raised by int(), Decimal() and dict lookups on node payloads missing a field.
MALFORMED_PAYLOAD_ERRORS = (KeyError, TypeError, ValueError, InvalidOperation)


def _output_address(script_pub_key: Dict[str, Any]) -> str:
    address = script_pub_key.get("address")
    if address:
        return str(address)
    # Pre-22.0 nodes list addresses instead of a single address.
    addresses = script_pub_key.get("addresses") or []
    return str(addresses[0]) if addresses else ""


class Node:
    """Node collaborator returning typed results."""

    def __init__(self, client: NodeRPCMethods) -> None:
        self.client = client

    def list_spendable_outputs(self, addresses: Iterable[str]) -> List[UnspentOutput]:
        entries = self.client.listunspent(0, 9999999, list(addresses))
        if not isinstance(entries, list):
            raise CollaboratorError(f"listunspent returned {type(entries).__name__}, expected a list")
        try:
            utxos = [UnspentOutput.from_rpc(entry) for entry in entries]
        except MALFORMED_PAYLOAD_ERRORS as exc:
            raise CollaboratorError(f"listunspent returned a malformed entry: {exc!r}") from exc
        skipped = [utxo for utxo in utxos if not utxo.spendable]
        if skipped:
            logger.debug("Ignoring %d unspendable outputs", len(skipped))
        return [utxo for utxo in utxos if utxo.spendable]

    def decode_raw_transaction(self, raw_tx: str) -> DecodedTransaction:
        decoded = self.client.decoderawtransaction(raw_tx)
        if not isinstance(decoded, dict):
            raise CollaboratorError("decoderawtransaction returned an unexpected payload")

        if any("coinbase" in vin for vin in decoded.get("vin") or []):
            raise ValidationError("coinbase transactions cannot be amended")
        try:
            inputs = [
                InputReference(txid=str(vin["txid"]), vout=int(vin["vout"])) for vin in decoded.get("vin") or []
            ]
            outputs = [
                DecodedOutput(
                    value_sats=to_satoshi(vout["value"]),
                    destination_address=_output_address(vout.get("scriptPubKey") or {}),
                    index=int(vout.get("n", index)),
                )
                for index, vout in enumerate(decoded.get("vout") or [])
            ]
        except MALFORMED_PAYLOAD_ERRORS as exc:
            raise CollaboratorError(f"decoderawtransaction returned a malformed transaction: {exc!r}") from exc
        return DecodedTransaction(txid=str(decoded.get("txid", "")), inputs=inputs, outputs=outputs)

    def create_raw_transaction(self, inputs: Iterable[InputReference], target: OutputTarget) -> str:
        return self.client.createrawtransaction(
            [reference.to_rpc() for reference in inputs], target.to_rpc()
        )

    def get_new_address(self) -> str:
        address = str(self.client.getnewaddress()).strip()
        if not address:
            raise CollaboratorError("getnewaddress returned an empty address")
        return address

    def sign_raw_transaction(self, raw_tx: str) -> SignResult:
        signed = self.client.signrawtransactionwithwallet(raw_tx)
        if not isinstance(signed, dict):
            raise CollaboratorError("signrawtransactionwithwallet returned an unexpected payload")
        try:
            errors = [
                SignError(
                    txid=str(entry.get("txid", "")),
                    vout=int(entry["vout"]) if entry.get("vout") is not None else None,
                    error=str(entry.get("error", "")),
                )
                for entry in signed.get("errors") or []
            ]
        except MALFORMED_PAYLOAD_ERRORS as exc:
            raise CollaboratorError(f"signrawtransactionwithwallet returned malformed errors: {exc!r}") from exc
        return SignResult(
            hex=str(signed.get("hex", "")).strip(),
            complete=bool(signed.get("complete")),
            errors=errors,
        )

    def send_raw_transaction(self, raw_tx: str) -> str:
        return str(self.client.sendrawtransaction(raw_tx)).strip()
