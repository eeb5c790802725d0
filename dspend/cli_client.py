"""Node transport that shells out to ``bitcoin-cli``."""

from __future__ import annotations

import json
import logging
import re
import subprocess
from decimal import Decimal
from typing import Any, Optional, Sequence

from .config import RPCConfig
from .rpc_client import NodeRPCMethods, RPCError, RPCTransportError

logger = logging.getLogger(__name__)

STRING_RESULT_METHODS = frozenset(
    {"getnewaddress", "createrawtransaction", "sendrawtransaction", "getrawchangeaddress"}
)
_ERROR_CODE_RE = re.compile(r"error code:\s*(-?\d+)")
_ERROR_MESSAGE_RE = re.compile(r"error message:\s*(.*)", re.DOTALL)


def parse_cli_error(stderr: str) -> tuple[int, str]:
    """Extract ``(code, message)`` from ``bitcoin-cli`` error output."""

    code_match = _ERROR_CODE_RE.search(stderr)
    message_match = _ERROR_MESSAGE_RE.search(stderr)
    code = int(code_match.group(1)) if code_match else -1
    message = message_match.group(1).strip() if message_match else stderr.strip()
    return code, message or "unknown error"


class BitcoinCliClient(NodeRPCMethods):
    """Run node methods through a ``bitcoin-cli`` subprocess per call."""

    def __init__(
        self,
        executable: str = "bitcoin-cli",
        *,
        network: str = "main",
        rpc_config: RPCConfig | None = None,
        timeout: float = 60,
    ) -> None:
        self.executable = executable
        self.network = network
        self.rpc_config = rpc_config
        self.timeout = timeout

    def _base_command(self) -> list[str]:
        command = [self.executable]
        if self.network == "test":
            command.append("-testnet")
        config = self.rpc_config
        if config is not None:
            command.extend(
                [
                    f"-rpcconnect={config.host}",
                    f"-rpcport={config.port}",
                    f"-rpcuser={config.user}",
                    f"-rpcpassword={config.password}",
                ]
            )
            if config.wallet:
                command.append(f"-rpcwallet={config.wallet}")
        return command

    @staticmethod
    def _format_args(params: Sequence[Any]) -> list[str]:
        return [param if isinstance(param, str) else json.dumps(param) for param in params]

    def call(self, method: str, params: Optional[list[Any]] = None) -> Any:
        args = self._format_args(params or [])
        command = self._base_command() + [method, *args]
        logger.debug("- command: %s %s %s", self.executable, method, " ".join(args))
        try:
            completed = subprocess.run(
                command, capture_output=True, text=True, timeout=self.timeout, check=False
            )
        except FileNotFoundError as exc:
            raise RPCTransportError(
                f"{self.executable} not found; install Bitcoin Core or use --backend rpc"
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise RPCTransportError(f"{self.executable} {method} timed out after {self.timeout}s") from exc

        if completed.returncode != 0:
            stderr = completed.stderr or completed.stdout
            if not _ERROR_CODE_RE.search(stderr):
                # No "error code:" line means the node was never reached.
                raise RPCTransportError(f"{self.executable} {method} failed: {stderr.strip()}")
            code, message = parse_cli_error(stderr)
            raise RPCError(code, message)

        output = completed.stdout.strip()
        if method in STRING_RESULT_METHODS:
            return output
        if not output:
            return None
        try:
            return json.loads(output, parse_float=Decimal)
        except ValueError:
            return output
