"""JSON-RPC client for Bitcoin Core style nodes.

The client is a thin transport: every helper maps directly onto an RPC method
and returns the parsed JSON result. Numbers are parsed as :class:`Decimal` so
amounts reported by the node never pass through binary floating point. No
consensus logic lives here; the client forwards requests and surfaces errors
as :class:`RPCError` (the node answered with an error) or
:class:`RPCTransportError` (the node could not be reached or answered with
garbage).
"""

from __future__ import annotations

import itertools
import json
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

import requests
from requests import RequestException, Response

from .config import RPCConfig
from .errors import CollaboratorError

logger = logging.getLogger(__name__)


class RPCError(CollaboratorError):
    """Raised when the node responds with an RPC error."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.message = message


class RPCTransportError(CollaboratorError):
    """Raised when the RPC endpoint is unreachable or returns malformed data."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def format_rpc_hint(error_obj: dict[str, Any] | RPCError | None) -> str | None:
    """Return a human-friendly hint for common Bitcoin Core JSON-RPC errors."""

    if error_obj is None:
        return None

    code = None
    message = ""
    if isinstance(error_obj, RPCError):
        code = error_obj.code
        message = error_obj.message
    elif isinstance(error_obj, dict):
        code = error_obj.get("code")
        message = str(error_obj.get("message", ""))
    lowered = message.lower()

    if code == -26 and "min relay fee not met" in lowered:
        return "The node rejected the transaction because the fee is below its minrelaytxfee policy. Re-run modify-tx with a higher --fee."
    if code == -13 or "wallet passphrase" in lowered or "wallet locked" in lowered:
        return "The wallet is locked. Unlock it with walletpassphrase, then retry the command."
    if code == -5 and "invalid" in lowered and "address" in lowered:
        return "The destination address is not valid for this network; check --testnet and the address."
    if code == -25 or "missing inputs" in lowered or "bad-txns-inputs-missingorspent" in lowered:
        return "One of the inputs is already spent or unknown to the node; re-create the transaction from current UTXOs."
    if code == -27 or "already in block chain" in lowered:
        return "The transaction is already confirmed; nothing to broadcast."
    if code in {-4, -6} or "insufficient funds" in lowered:
        return "The wallet could not fund the request. Check the source address balance."
    if code == -18 or "requested wallet does not exist" in lowered:
        return "No wallet is loaded. Load one with loadwallet or pass --rpc-wallet."
    return None


class NodeRPCMethods:
    """Typed wrappers shared by every node transport.

    Subclasses implement :meth:`call`.
    """

    def call(self, method: str, params: Optional[list[Any]] = None) -> Any:
        raise NotImplementedError

    def listunspent(
        self,
        minconf: int = 0,
        maxconf: int = 9999999,
        addresses: Optional[list[str]] = None,
    ) -> list[Dict[str, Any]]:
        params: list[Any] = [minconf, maxconf]
        if addresses is not None:
            params.append(addresses)
        return self.call("listunspent", params)

    def decoderawtransaction(self, raw_tx: str) -> Dict[str, Any]:
        return self.call("decoderawtransaction", [raw_tx])

    def createrawtransaction(
        self,
        inputs: list[Dict[str, Any]],
        outputs: Dict[str, str] | list[Dict[str, str]],
    ) -> str:
        return self.call("createrawtransaction", [inputs, outputs])

    def getnewaddress(self, label: str | None = None) -> str:
        params: list[Any] = []
        if label is not None:
            params.append(label)
        return self.call("getnewaddress", params)

    def signrawtransactionwithwallet(self, raw_tx: str) -> Dict[str, Any]:
        return self.call("signrawtransactionwithwallet", [raw_tx])

    def sendrawtransaction(self, raw_tx: str) -> str:
        return self.call("sendrawtransaction", [raw_tx])


class BitcoinRPCClient(NodeRPCMethods):
    """JSON-RPC client for Bitcoin Core compatible nodes over HTTP."""

    def __init__(self, config: RPCConfig, session: requests.Session | None = None) -> None:
        self.config = config
        self._session = session or requests.Session()
        self._ids = itertools.count(1)

    @property
    def _url(self) -> str:
        if self.config.wallet:
            return f"{self.config.base_url}/wallet/{self.config.wallet}"
        return self.config.base_url

    def call(self, method: str, params: Optional[list[Any]] = None) -> Any:
        """Perform a JSON-RPC request and return its ``result``."""

        request_id = next(self._ids)
        payload = {
            "jsonrpc": "1.0",
            "id": request_id,
            "method": method,
            "params": params or [],
        }
        logger.debug("RPC call %s id=%s params=%s", method, request_id, params)
        try:
            response = self._session.post(
                self._url,
                data=json.dumps(payload),
                headers={"content-type": "application/json"},
                auth=(self.config.user, self.config.password),
                timeout=self.config.timeout,
            )
        except RequestException as exc:
            logger.error(
                "RPC connection failed: %s",
                exc,
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            raise RPCTransportError(
                "RPC connection failed. Ensure your node is reachable and DSPEND_RPC_* "
                "variables (or ~/.dspend.yaml) point to the right host and port."
            ) from exc

        body = self._parse_body(response)
        error = body.get("error") if isinstance(body, dict) else None
        if error:
            # Bitcoin Core reports RPC failures as HTTP 500 with a JSON error body.
            if isinstance(error, dict):
                raise RPCError(int(error.get("code", -1)), str(error.get("message", "unknown")))
            raise RPCError(-1, str(error))
        if not response.ok:
            self._raise_for_status(response)
        if not isinstance(body, dict) or "result" not in body:
            raise RPCTransportError("RPC server returned a response without a result", response.status_code)
        if body.get("id") not in (None, request_id):
            logger.warning("RPC response id %s does not match request id %s", body.get("id"), request_id)
        return body["result"]

    def _parse_body(self, response: Response) -> Any:
        try:
            return response.json(parse_float=Decimal)
        except ValueError:
            if not response.ok:
                self._raise_for_status(response)
            logger.debug("RPC JSON parse error: %s", response.text)
            raise RPCTransportError("RPC server returned malformed JSON", response.status_code)

    def _raise_for_status(self, response: Response) -> None:
        logger.error("RPC HTTP error %s from %s", response.status_code, response.url)
        if response.status_code == 401:
            raise RPCTransportError(
                "Unauthorized (401). Ensure DSPEND_RPC_USER/DSPEND_RPC_PASSWORD (or RPC_USER/RPC_PASS) are valid.",
                status_code=response.status_code,
            )
        raise RPCTransportError(
            f"RPC server returned HTTP {response.status_code}; check the URL, wallet path and credentials.",
            status_code=response.status_code,
        )
