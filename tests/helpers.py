from __future__ import annotations

from decimal import Decimal
from typing import Any

from dspend.explorer import ExplorerError
from dspend.models import ExternalOutput, ExternalTxRecord
from dspend.node import Node

SOURCE = "tb1qsource"


class StubNodeClient:
    """Records node calls and answers with canned payloads."""

    def __init__(
        self,
        unspent: list[dict[str, Any]] | None = None,
        decoded: dict[str, Any] | None = None,
        new_addresses: list[str] | None = None,
        signed: dict[str, Any] | None = None,
        create_error: Exception | None = None,
    ) -> None:
        self.unspent = unspent or []
        self.decoded = decoded or {"txid": "", "vin": [], "vout": []}
        self.new_addresses = list(new_addresses or ["tb1qfresh"])
        self.signed = signed or {"hex": "signedhex", "complete": True}
        self.create_error = create_error
        self.calls: list[tuple[str, tuple[Any, ...]]] = []

    def count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    def last(self, method: str) -> tuple[Any, ...]:
        return [args for name, args in self.calls if name == method][-1]

    def listunspent(self, minconf, maxconf, addresses=None):
        self.calls.append(("listunspent", (minconf, maxconf, addresses)))
        return self.unspent

    def decoderawtransaction(self, raw_tx):
        self.calls.append(("decoderawtransaction", (raw_tx,)))
        return self.decoded

    def createrawtransaction(self, inputs, outputs):
        self.calls.append(("createrawtransaction", (inputs, outputs)))
        if self.create_error is not None:
            raise self.create_error
        return f"rawhex-{self.count('createrawtransaction')}"

    def getnewaddress(self, label=None):
        self.calls.append(("getnewaddress", ()))
        return self.new_addresses.pop(0)

    def signrawtransactionwithwallet(self, raw_tx):
        self.calls.append(("signrawtransactionwithwallet", (raw_tx,)))
        return self.signed

    def sendrawtransaction(self, raw_tx):
        self.calls.append(("sendrawtransaction", (raw_tx,)))
        return "broadcast-txid"


class StubExplorer:
    def __init__(self, records: dict[str, ExternalTxRecord], fail_on: set[str] | None = None) -> None:
        self.records = records
        self.fail_on = fail_on or set()
        self.requests: list[tuple[str, str]] = []

    def get_transaction_record(self, network: str, txid: str) -> ExternalTxRecord:
        self.requests.append((network, txid))
        if txid in self.fail_on:
            raise ExplorerError(f"explorer returned HTTP 503 for {txid}", status_code=503)
        return self.records[txid]


def record(*outputs: tuple[list[str], int], error: str | None = None) -> ExternalTxRecord:
    return ExternalTxRecord(
        outputs=[ExternalOutput(addresses=addresses, value_sats=value) for addresses, value in outputs],
        error=error,
    )


def decoded_tx(inputs: list[tuple[str, int]], outputs: list[tuple[str, str]], txid: str = "newtx") -> dict[str, Any]:
    return {
        "txid": txid,
        "vin": [{"txid": ref, "vout": vout, "sequence": 4294967293} for ref, vout in inputs],
        "vout": [
            {"value": Decimal(value), "n": index, "scriptPubKey": {"address": address}}
            for index, (address, value) in enumerate(outputs)
        ],
    }


def make_node(**kwargs: Any) -> tuple[Node, StubNodeClient]:
    client = StubNodeClient(**kwargs)
    return Node(client), client  # type: ignore[arg-type]
