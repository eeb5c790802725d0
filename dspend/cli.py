"""Command line interface for dspend.

``create-tx`` spends every UTXO of a source address into one output,
``view-tx`` recovers the input values of an unsigned transaction,
``modify-tx`` changes its fee and/or destination, and ``send-tx`` signs and
broadcasts through the node wallet.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import dataclass
from typing import Any, Sequence

from .amendment import (
    AmendmentResult,
    LayeredDecisions,
    PromptDecisions,
    ScriptedDecisions,
    TransactionAmendment,
)
from .assembler import create_transaction
from .broadcast import sign_and_send
from .cli_client import BitcoinCliClient
from .config import AppConfig, ConfigurationError, load_config
from .errors import DSpendError
from .explorer import BlockCypherExplorer
from .node import Node
from .reconciler import TransactionSummary, ValueReconciler, summarize_transaction
from .rpc_client import BitcoinRPCClient, NodeRPCMethods, RPCError, format_rpc_hint
from .units import format_btc

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(message)s"
DEBUG_LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"


class CLIError(RuntimeError):
    """Raised when CLI arguments are invalid."""


@dataclass
class CommandContext:
    config: AppConfig
    node: Node

    def reconciler(self) -> ValueReconciler:
        explorer = BlockCypherExplorer(self.config.explorer)
        return ValueReconciler(
            explorer, self.config.network, max_workers=self.config.spend.reconcile_workers
        )


def _non_negative_int(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected an integer number of satoshis, got {raw!r}") from None
    if value < 0:
        raise argparse.ArgumentTypeError("fee must not be negative")
    return value


def _add_common_options(parser: argparse.ArgumentParser, *, suppress_defaults: bool = False) -> None:
    # Accepted before and after the command; the subcommand copy must not
    # overwrite a value given before it, so its defaults are suppressed.
    flag_default: Any = argparse.SUPPRESS if suppress_defaults else False
    default: Any = argparse.SUPPRESS if suppress_defaults else None
    parser.add_argument("--debug", action="store_true", default=flag_default, help="Run in debug mode")
    parser.add_argument("--testnet", action="store_true", default=flag_default, help="Run on testnet")
    parser.add_argument("--config", default=default, help="Path to a dspend YAML config file")
    parser.add_argument(
        "--backend",
        choices=("rpc", "cli"),
        default=default,
        help="Reach the node over JSON-RPC (default) or through bitcoin-cli",
    )
    parser.add_argument("--rpc-url", default=default, help="Node RPC endpoint, e.g. http://127.0.0.1:8332")
    parser.add_argument("--rpc-user", default=default, help="Node RPC user")
    parser.add_argument("--rpc-password", default=default, help="Node RPC password")
    parser.add_argument("--rpc-wallet", default=default, help="Wallet name for /wallet/<name> calls")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dspend", description="Create, inspect, amend and send transactions")
    _add_common_options(parser)
    subparsers = parser.add_subparsers(dest="command", required=True)

    create_parser = subparsers.add_parser("create-tx", help="Create a new transaction")
    _add_common_options(create_parser, suppress_defaults=True)
    create_parser.add_argument("--source-address", required=True, help="Source Bitcoin address")
    create_parser.add_argument(
        "--destination-address",
        default="",
        help="Destination Bitcoin address (default: a new address from the node wallet)",
    )
    create_parser.add_argument(
        "--fee", type=_non_negative_int, default=0, help="Fee in satoshi (default: configured fee)"
    )

    view_parser = subparsers.add_parser("view-tx", help="View transaction")
    _add_common_options(view_parser, suppress_defaults=True)
    view_parser.add_argument(
        "--raw-tx", "-e", required=True, help="Existing raw transaction in hexadecimal format"
    )
    view_parser.add_argument("--source-address", "-a", required=True, help="Source Bitcoin address")
    view_parser.add_argument("--json", dest="as_json", action="store_true", help="Print the summary as JSON")

    modify_parser = subparsers.add_parser("modify-tx", help="Modify an existing transaction")
    _add_common_options(modify_parser, suppress_defaults=True)
    modify_parser.add_argument(
        "--raw-tx", "-e", required=True, help="Existing raw transaction in hexadecimal format"
    )
    modify_parser.add_argument("--source-address", required=True, help="Source Bitcoin address")
    fee_group = modify_parser.add_mutually_exclusive_group()
    fee_group.add_argument("--fee", type=_non_negative_int, default=None, help="New fee in satoshi")
    fee_group.add_argument("--keep-fee", action="store_true", help="Keep the current fee")
    destination_group = modify_parser.add_mutually_exclusive_group()
    destination_group.add_argument(
        "--new-destination",
        dest="new_destination",
        action="store_const",
        const=True,
        default=None,
        help="Send to a new address from the node wallet",
    )
    destination_group.add_argument(
        "--keep-destination",
        dest="new_destination",
        action="store_const",
        const=False,
        help="Keep the current destination address",
    )
    modify_parser.add_argument(
        "--yes",
        "-y",
        action="store_true",
        help="Do not prompt; keep whatever was not set by --fee/--new-destination",
    )

    send_parser = subparsers.add_parser("send-tx", help="Sign and broadcast a transaction")
    _add_common_options(send_parser, suppress_defaults=True)
    send_parser.add_argument("--raw-tx", "-s", required=True, help="Raw transaction in hexadecimal format")

    return parser


def _configure_logging(debug: bool) -> None:
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(level=level, format=DEBUG_LOG_FORMAT if debug else LOG_FORMAT)
    logging.getLogger().setLevel(level)
    # urllib3 is noisy at DEBUG and would echo request URLs carrying the API token.
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def _load_app_config(args: argparse.Namespace) -> AppConfig:
    overrides = {
        "endpoint": args.rpc_url,
        "user": args.rpc_user,
        "password": args.rpc_password,
        "wallet": args.rpc_wallet,
        "backend": args.backend,
    }
    return load_config(
        config_path=args.config,
        overrides={key: value for key, value in overrides.items() if value is not None},
        testnet=args.testnet,
    )


def _build_client(config: AppConfig) -> NodeRPCMethods:
    if config.spend.node_backend == "cli":
        return BitcoinCliClient(config.spend.bitcoin_cli, network=config.network, rpc_config=config.rpc)
    if config.rpc is None:  # pragma: no cover - load_config enforces credentials for rpc
        raise ConfigurationError("RPC backend selected but no RPC credentials configured")
    return BitcoinRPCClient(config.rpc)


def build_context(args: argparse.Namespace) -> CommandContext:
    config = _load_app_config(args)
    return CommandContext(config=config, node=Node(_build_client(config)))


def summary_to_dict(summary: TransactionSummary) -> dict[str, Any]:
    unmatched = {str(reference) for reference in summary.unmatched}
    return {
        "txid": summary.txid,
        "source_address": summary.source_address,
        "inputs": [
            {
                "txid": item.reference.txid,
                "vout": item.reference.vout,
                "value": format_btc(item.value_sats),
                "reconciled": str(item.reference) not in unmatched,
            }
            for item in summary.inputs
        ],
        "outputs": [
            {"address": output.destination_address, "value": format_btc(output.value_sats)}
            for output in summary.outputs
        ],
        "total_in": format_btc(summary.total_in_sats),
        "total_out": format_btc(summary.total_out_sats),
        "fee": format_btc(summary.fee_sats),
        "partial": bool(summary.unmatched),
    }


def print_summary(summary: TransactionSummary) -> None:
    print("transaction details")
    print(f"source address: {summary.source_address}")
    print("inputs")
    for item in summary.inputs:
        print(f"{item.reference}:\t{format_btc(item.value_sats)}")
    print(f"total input:\t\t{format_btc(summary.total_in_sats)}")
    print("outputs")
    for output in summary.outputs:
        print(f"{output.destination_address}:\t{format_btc(output.value_sats)}")
    print(f"fee:\t\t\t{format_btc(summary.fee_sats)}")
    print(f"output amount:\t\t{format_btc(summary.total_out_sats)}")
    if summary.unmatched:
        print(f"warning: {len(summary.unmatched)} input(s) could not be reconciled; totals are partial")


def cmd_create(args: argparse.Namespace) -> None:
    context = build_context(args)
    assembled = create_transaction(
        context.node,
        args.source_address,
        args.destination_address,
        args.fee,
        default_fee_sats=context.config.spend.default_fee_sats,
    )
    print("\ntransaction created, here is the raw transaction hex:")
    print(assembled.raw_tx)


def cmd_view(args: argparse.Namespace) -> None:
    context = build_context(args)
    _, summary = summarize_transaction(context.node, context.reconciler(), args.raw_tx, args.source_address)
    if args.as_json:
        print(json.dumps(summary_to_dict(summary), indent=2))
        return
    print_summary(summary)


def decisions_from_args(args: argparse.Namespace) -> LayeredDecisions | ScriptedDecisions:
    if args.yes:
        return ScriptedDecisions(fee_sats=args.fee, new_destination=bool(args.new_destination))
    return LayeredDecisions(
        fallback=PromptDecisions(),
        fee_sats=args.fee,
        keep_fee=args.keep_fee,
        new_destination=args.new_destination,
    )


def cmd_modify(args: argparse.Namespace) -> AmendmentResult:
    context = build_context(args)
    amendment = TransactionAmendment(
        context.node, context.reconciler(), decisions_from_args(args), args.raw_tx, args.source_address
    )
    result = amendment.run(on_reconciled=print_summary)
    draft = result.draft
    print(f"\nfee:\t\t\t{format_btc(draft.fee_sats)}")
    print(f"destination address:\t{draft.output.destination_address}")
    print(f"output amount:\t\t{format_btc(draft.output.amount_sats)}")
    print(result.raw_tx)
    return result


def cmd_send(args: argparse.Namespace) -> None:
    context = build_context(args)
    txid = sign_and_send(context.node, args.raw_tx)
    print("Transaction sent. Hash:")
    print(txid)


COMMANDS = {
    "create-tx": cmd_create,
    "view-tx": cmd_view,
    "modify-tx": cmd_modify,
    "send-tx": cmd_send,
}


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.debug)
    try:
        handler = COMMANDS.get(args.command)
        if handler is None:  # pragma: no cover - argparse enforces choices
            raise CLIError(f"Unknown command: {args.command}")
        handler(args)
    except KeyboardInterrupt:  # pragma: no cover - interactive use
        logger.info("Interrupted by user")
        parser.exit(130)
    except RPCError as exc:
        hint = format_rpc_hint(exc)
        parser.exit(1, f"error: {exc}\n" + (f"Hint: {hint}\n" if hint else ""))
    except (CLIError, ConfigurationError, DSpendError) as exc:
        parser.exit(1, f"error: {exc}\n")


if __name__ == "__main__":
    main(sys.argv[1:])
