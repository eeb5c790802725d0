"""Sign a raw transaction with the node wallet and broadcast it."""

from __future__ import annotations

import logging

from .errors import CollaboratorError, ValidationError
from .node import Node
from .rpc_client import RPCError, format_rpc_hint

logger = logging.getLogger(__name__)


class SigningError(CollaboratorError):
    """Raised when the node wallet cannot fully sign a transaction."""


def sign_transaction(node: Node, raw_tx: str) -> str:
    """Return the signed hex, failing on incomplete signatures or per-input errors."""

    if not raw_tx:
        raise ValidationError("raw transaction hex required")

    logger.info("Signing transaction...")
    signed = node.sign_raw_transaction(raw_tx)
    if not signed.complete or signed.errors:
        details = "; ".join(
            f"{error.txid}:{error.vout}: {error.error}" if error.vout is not None else f"{error.txid}: {error.error}"
            for error in signed.errors
        )
        raise SigningError(
            "error in signing raw transaction" + (f": {details}" if details else " (signature set incomplete)")
        )
    logger.debug("Signed tx: %s", signed.hex)
    return signed.hex


def sign_and_send(node: Node, raw_tx: str) -> str:
    """Sign ``raw_tx`` and broadcast it, returning the transaction id."""

    signed_hex = sign_transaction(node, raw_tx)
    logger.info("Broadcasting transaction to the network...")
    try:
        txid = node.send_raw_transaction(signed_hex)
    except RPCError as exc:
        hint = format_rpc_hint(exc)
        if hint:
            logger.error("sendrawtransaction failed: %s (%s)", exc, hint)
        raise
    logger.info("Broadcasted transaction %s", txid)
    return txid
