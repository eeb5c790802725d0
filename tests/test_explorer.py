from __future__ import annotations

import json

import pytest
import requests

from dspend.config import ExplorerConfig
from dspend.explorer import OUTPUT_PAGE_LIMIT, BlockCypherExplorer, ExplorerError, parse_transaction_record
from dspend.models import InputReference
from dspend.reconciler import ValueReconciler


class FakeResponse:
    def __init__(self, status_code: int, text: str) -> None:
        self.status_code = status_code
        self.text = text

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self, **kwargs):
        return json.loads(self.text, **kwargs)


class FakeSession:
    def __init__(
        self,
        response: FakeResponse | None = None,
        exc: Exception | None = None,
        responses: list[FakeResponse] | None = None,
    ) -> None:
        self.response = response
        self.responses = list(responses or [])
        self.exc = exc
        self.gets: list[dict] = []

    def get(self, url, params=None, timeout=None):
        self.gets.append({"url": url, "params": params, "timeout": timeout})
        if self.exc is not None:
            raise self.exc
        if self.responses:
            return self.responses.pop(0)
        return self.response


BODY = {
    "hash": "abc",
    "outputs": [
        {"value": 1_500_000, "addresses": ["tb1qother"]},
        {"value": 2_000_000, "addresses": ["tb1qsource"]},
        {"value": 0, "script_type": "null-data"},
    ],
}


def test_record_fetch_uses_network_path_and_token() -> None:
    session = FakeSession(FakeResponse(200, json.dumps(BODY)))
    explorer = BlockCypherExplorer(ExplorerConfig(token="tok"), session=session)  # type: ignore[arg-type]

    record = explorer.get_transaction_record("test", "abc")

    assert session.gets[0]["url"] == "https://api.blockcypher.com/v1/btc/test3/txs/abc"
    assert session.gets[0]["params"] == {"limit": OUTPUT_PAGE_LIMIT, "token": "tok"}
    assert record.error is None
    assert [output.value_sats for output in record.outputs] == [1_500_000, 2_000_000, 0]
    assert record.outputs[2].addresses == []


def test_unknown_txid_is_a_domain_error_not_a_transport_error() -> None:
    session = FakeSession(FakeResponse(404, '{"error": "Transaction abc not found."}'))
    explorer = BlockCypherExplorer(ExplorerConfig(), session=session)  # type: ignore[arg-type]

    record = explorer.get_transaction_record("main", "abc")

    assert session.gets[0]["url"].endswith("/v1/btc/main/txs/abc")
    assert session.gets[0]["params"] == {"limit": OUTPUT_PAGE_LIMIT}
    assert record.error == "Transaction abc not found."
    assert record.outputs == []


@pytest.mark.parametrize(
    "response",
    [
        FakeResponse(503, "Service Unavailable"),
        FakeResponse(429, '{"error": "Limits reached."}'),
        FakeResponse(200, "not json"),
        FakeResponse(200, "[1, 2]"),
    ],
)
def test_transport_failures_raise(response: FakeResponse) -> None:
    explorer = BlockCypherExplorer(ExplorerConfig(), session=FakeSession(response))  # type: ignore[arg-type]

    with pytest.raises(ExplorerError):
        explorer.get_transaction_record("main", "abc")


def test_timeout_raises_explorer_error() -> None:
    session = FakeSession(exc=requests.Timeout("slow"))
    explorer = BlockCypherExplorer(ExplorerConfig(), session=session)  # type: ignore[arg-type]

    with pytest.raises(ExplorerError):
        explorer.get_transaction_record("main", "abc")


def test_unknown_network_is_rejected() -> None:
    explorer = BlockCypherExplorer(ExplorerConfig(), session=FakeSession())  # type: ignore[arg-type]

    with pytest.raises(ExplorerError):
        explorer.get_transaction_record("regtest", "abc")


def test_parse_rejects_non_integer_values() -> None:
    with pytest.raises(ExplorerError):
        parse_transaction_record({"outputs": [{"value": "lots", "addresses": ["x"]}]})


def _outputs(start: int, stop: int) -> list[dict]:
    return [{"value": 1_000 + index, "addresses": [f"tb1qaddr{index}"]} for index in range(start, stop)]


def test_outputs_beyond_first_page_are_fetched() -> None:
    first = {
        "hash": "big",
        "vout_sz": 25,
        "outputs": _outputs(0, 20),
        "next_outputs": "https://x/txs/big?outstart=20",
    }
    second = {"hash": "big", "vout_sz": 25, "outputs": _outputs(20, 25)}
    session = FakeSession(
        responses=[FakeResponse(200, json.dumps(first)), FakeResponse(200, json.dumps(second))]
    )
    explorer = BlockCypherExplorer(ExplorerConfig(), session=session)  # type: ignore[arg-type]

    reconciliation = ValueReconciler(explorer, "main").reconcile([InputReference("big", 23)], "tb1qaddr23")

    assert [get["params"] for get in session.gets] == [
        {"limit": OUTPUT_PAGE_LIMIT},
        {"limit": OUTPUT_PAGE_LIMIT, "outstart": 20},
    ]
    assert reconciliation.total_in_sats == 1_023
    assert reconciliation.unmatched == []


@pytest.mark.parametrize(
    "body",
    [
        {"hash": "big", "vout_sz": 25, "outputs": _outputs(0, 20)},
        {"hash": "big", "outputs": _outputs(0, 20), "next_outputs": "https://x/txs/big?outstart=20"},
        {"hash": "big", "vout_sz": "25", "outputs": _outputs(0, 20)},
    ],
)
def test_truncated_output_list_raises(body: dict) -> None:
    # Later pages come back empty, so the record can never be completed.
    session = FakeSession(
        FakeResponse(200, json.dumps({"hash": "big", "outputs": []})),
        responses=[FakeResponse(200, json.dumps(body))],
    )
    explorer = BlockCypherExplorer(ExplorerConfig(), session=session)  # type: ignore[arg-type]

    with pytest.raises(ExplorerError):
        explorer.get_transaction_record("main", "big")
