from __future__ import annotations

import json
from pathlib import Path

import pytest

from dspend import cli
from dspend.amendment import LayeredDecisions, ScriptedDecisions
from dspend.cli_client import BitcoinCliClient
from dspend.config import AppConfig
from dspend.rpc_client import RPCError

from helpers import SOURCE, StubExplorer, decoded_tx, make_node, record

UNSPENT = [
    {"address": SOURCE, "txid": "A", "vout": 0, "amount": "0.02000000", "spendable": True},
    {"address": SOURCE, "txid": "B", "vout": 1, "amount": "0.01000000", "spendable": True},
]
RECORDS = {"A": record(([SOURCE], 2_000_000)), "B": record((["tb1qx"], 5), ([SOURCE], 1_000_000))}


@pytest.fixture
def stub_context(monkeypatch: pytest.MonkeyPatch):
    node, client = make_node(
        unspent=UNSPENT,
        decoded=decoded_tx([("A", 0), ("B", 1)], [("tb1qdest", "0.02999600")]),
        new_addresses=["tb1qfresh"],
    )
    explorer = StubExplorer(RECORDS)
    context = cli.CommandContext(config=AppConfig(rpc=None), node=node)
    monkeypatch.setattr(cli, "build_context", lambda _args: context)
    monkeypatch.setattr(cli, "BlockCypherExplorer", lambda _config: explorer)
    return client, explorer


def test_create_tx_prints_raw_hex(stub_context, capsys: pytest.CaptureFixture[str]) -> None:
    client, _ = stub_context

    cli.main(["create-tx", "--source-address", SOURCE, "--destination-address", "tb1qdest", "--fee", "400"])

    out = capsys.readouterr().out
    assert "rawhex-1" in out
    assert client.last("createrawtransaction")[1] == {"tb1qdest": "0.02999600"}


def test_view_tx_json(stub_context, capsys: pytest.CaptureFixture[str]) -> None:
    _, explorer = stub_context

    cli.main(["view-tx", "-e", "rawhex", "-a", SOURCE, "--json"])

    payload = json.loads(capsys.readouterr().out)
    assert payload["total_in"] == "0.03000000"
    assert payload["fee"] == "0.00000400"
    assert payload["partial"] is False
    assert [entry["reconciled"] for entry in payload["inputs"]] == [True, True]
    assert explorer.requests == [("main", "A"), ("main", "B")]


def test_modify_tx_non_interactive(stub_context, capsys: pytest.CaptureFixture[str]) -> None:
    client, _ = stub_context

    cli.main(["modify-tx", "-e", "rawhex", "--source-address", SOURCE, "--fee", "1000", "--yes"])

    out = capsys.readouterr().out
    assert out.strip().endswith("rawhex-1")
    assert client.last("createrawtransaction")[1] == {"tb1qdest": "0.02999000"}
    assert client.count("getnewaddress") == 0


def test_modify_tx_prompts_for_unset_choices(stub_context, monkeypatch: pytest.MonkeyPatch) -> None:
    client, _ = stub_context
    answers = iter(["y"])
    monkeypatch.setattr("builtins.input", lambda _prompt: next(answers))

    cli.main(["modify-tx", "-e", "rawhex", "--source-address", SOURCE, "--keep-fee"])

    assert client.count("getnewaddress") == 1
    assert client.last("createrawtransaction")[1] == {"tb1qfresh": "0.02999600"}


def test_send_tx_prints_txid(stub_context, capsys: pytest.CaptureFixture[str]) -> None:
    cli.main(["send-tx", "-s", "rawhex"])

    assert "broadcast-txid" in capsys.readouterr().out


def test_domain_errors_exit_with_message(stub_context, capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["modify-tx", "-e", "rawhex", "--source-address", SOURCE, "--fee", "3000000", "--yes"])

    assert excinfo.value.code == 1
    assert "invalid amount/fee" in capsys.readouterr().err


def test_rpc_errors_include_hint(stub_context, capsys: pytest.CaptureFixture[str]) -> None:
    client, _ = stub_context
    client.create_error = RPCError(-13, "Please enter the wallet passphrase with walletpassphrase first.")

    with pytest.raises(SystemExit):
        cli.main(["create-tx", "--source-address", SOURCE])

    err = capsys.readouterr().err
    assert "RPC error -13" in err
    assert "Hint: The wallet is locked" in err


def test_negative_fee_is_rejected_by_parser() -> None:
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["create-tx", "--source-address", SOURCE, "--fee", "-1"])


def test_decisions_from_args() -> None:
    parser = cli.build_parser()

    scripted = cli.decisions_from_args(
        parser.parse_args(["modify-tx", "-e", "x", "--source-address", SOURCE, "--yes", "--new-destination"])
    )
    layered = cli.decisions_from_args(
        parser.parse_args(["modify-tx", "-e", "x", "--source-address", SOURCE, "--fee", "5"])
    )

    assert scripted == ScriptedDecisions(fee_sats=None, new_destination=True)
    assert isinstance(layered, LayeredDecisions)
    assert layered.fee_sats == 5
    assert layered.new_destination is None


def test_build_context_selects_cli_backend(tmp_path: Path) -> None:
    config_path = tmp_path / "dspend.yaml"
    config_path.write_text("spend:\n  node_backend: cli\n")
    args = cli.build_parser().parse_args(
        ["send-tx", "-s", "00", "--config", str(config_path), "--testnet"]
    )

    context = cli.build_context(args)

    assert isinstance(context.node.client, BitcoinCliClient)
    assert context.node.client.network == "test"


def test_common_options_accepted_before_and_after_command() -> None:
    parser = cli.build_parser()

    before = parser.parse_args(
        ["--testnet", "--backend", "cli", "--debug", "view-tx", "-e", "x", "-a", SOURCE]
    )
    after = parser.parse_args(["view-tx", "-e", "x", "-a", SOURCE, "--testnet", "--rpc-user", "u"])
    neither = parser.parse_args(["send-tx", "-s", "00"])

    assert (before.testnet, before.backend, before.debug) == (True, "cli", True)
    assert (after.testnet, after.rpc_user, after.backend) == (True, "u", None)
    assert (neither.testnet, neither.debug, neither.config, neither.rpc_url) == (False, False, None, None)
