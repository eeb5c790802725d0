"""Read-only BlockCypher client used to recover historical output values."""

from __future__ import annotations

import logging
from typing import Any, Dict

import requests
from requests import RequestException, Response

from .config import ExplorerConfig
from .errors import CollaboratorError
from .models import ExternalOutput, ExternalTxRecord

logger = logging.getLogger(__name__)

# BlockCypher names bitcoin testnet "test3".
NETWORK_PATHS = {"main": "main", "test": "test3"}
DOMAIN_ERROR_STATUSES = frozenset({400, 404})
# Outputs beyond the first page are fetched with "outstart"; 2000 is the largest page allowed.
OUTPUT_PAGE_LIMIT = 2000


class ExplorerError(CollaboratorError):
    """Raised when the explorer is unreachable or returns malformed data."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def parse_transaction_record(body: Dict[str, Any]) -> ExternalTxRecord:
    """Build an :class:`ExternalTxRecord` from a BlockCypher ``txs`` payload."""

    error = body.get("error")
    if error:
        return ExternalTxRecord(outputs=[], error=str(error))

    outputs = []
    for entry in body.get("outputs") or []:
        try:
            value = int(entry.get("value", 0))
        except (TypeError, ValueError) as exc:
            raise ExplorerError(f"explorer output has a non-integer value: {entry.get('value')!r}") from exc
        outputs.append(ExternalOutput(addresses=list(entry.get("addresses") or []), value_sats=value))
    return ExternalTxRecord(outputs=outputs)


def _output_count(body: Dict[str, Any], received: int, txid: str) -> int:
    count = body.get("vout_sz")
    if count is None:
        if body.get("next_outputs"):
            raise ExplorerError(f"explorer truncated the outputs of {txid} without a vout_sz")
        return received
    if isinstance(count, bool) or not isinstance(count, int) or count < 0:
        raise ExplorerError(f"explorer returned an invalid vout_sz for {txid}: {count!r}")
    return count


class BlockCypherExplorer:
    """Fetch transaction records from the BlockCypher REST API."""

    def __init__(self, config: ExplorerConfig, session: requests.Session | None = None) -> None:
        self.config = config
        self._session = session or requests.Session()

    def transaction_url(self, network: str, txid: str) -> str:
        try:
            network_path = NETWORK_PATHS[network]
        except KeyError:
            raise ExplorerError(f"unsupported explorer network: {network}") from None
        return f"{self.config.base_url}/{network_path}/txs/{txid}"

    def get_transaction_record(self, network: str, txid: str) -> ExternalTxRecord:
        url = self.transaction_url(network, txid)
        body = self._fetch(url, txid, self._params())
        record = parse_transaction_record(body)
        if record.error is not None:
            return record

        outputs = list(record.outputs)
        expected = _output_count(body, len(outputs), txid)
        while len(outputs) < expected:
            logger.debug("Fetching outputs of %s from index %d of %d", txid, len(outputs), expected)
            page = parse_transaction_record(self._fetch(url, txid, self._params(outstart=len(outputs))))
            if page.error is not None:
                raise ExplorerError(f"explorer failed to page outputs of {txid}: {page.error}")
            if not page.outputs:
                break
            outputs.extend(page.outputs)
        if len(outputs) != expected:
            raise ExplorerError(f"explorer returned {len(outputs)} of {expected} outputs for {txid}")
        return ExternalTxRecord(outputs=outputs)

    def _params(self, outstart: int = 0) -> Dict[str, Any]:
        params: Dict[str, Any] = {"limit": OUTPUT_PAGE_LIMIT}
        if outstart:
            params["outstart"] = outstart
        if self.config.token:
            params["token"] = self.config.token
        return params

    def _fetch(self, url: str, txid: str, params: Dict[str, Any]) -> Dict[str, Any]:
        logger.debug("GET %s", url)
        try:
            response = self._session.get(url, params=params, timeout=self.config.timeout)
        except RequestException as exc:
            logger.error(
                "Explorer request failed: %s", exc, exc_info=logger.isEnabledFor(logging.DEBUG)
            )
            raise ExplorerError(f"explorer request for {txid} failed: {exc}") from exc

        body = self._parse_body(response, txid)
        # 400/404 with an error body means the explorer rejected this txid;
        # anything else (rate limits, outages) is a transport failure.
        if not response.ok and not (response.status_code in DOMAIN_ERROR_STATUSES and body.get("error")):
            raise ExplorerError(
                f"explorer returned HTTP {response.status_code} for {txid}",
                status_code=response.status_code,
            )
        return body

    @staticmethod
    def _parse_body(response: Response, txid: str) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError as exc:
            raise ExplorerError(
                f"explorer returned malformed JSON for {txid} (HTTP {response.status_code})",
                status_code=response.status_code,
            ) from exc
        if not isinstance(body, dict):
            raise ExplorerError(
                f"explorer returned an unexpected payload for {txid}", status_code=response.status_code
            )
        return body
