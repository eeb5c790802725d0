"""Shared configuration loader for dspend."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import urlparse

import yaml


class ConfigurationError(RuntimeError):
    """Raised when configuration is invalid."""


DEFAULT_CONFIG_PATH = Path.home() / ".dspend.yaml"
DEFAULT_FEE_SATS = 400
DEFAULT_RPC_PORTS = {"main": 8332, "test": 18332}
BLOCKCYPHER_BASE_URL = "https://api.blockcypher.com/v1/btc"
NETWORKS = ("main", "test")
NODE_BACKENDS = ("rpc", "cli")


@dataclass
class RPCConfig:
    """Connection details for a Bitcoin Core JSON-RPC endpoint."""

    user: str
    password: str
    host: str = "127.0.0.1"
    port: int = DEFAULT_RPC_PORTS["main"]
    use_https: bool = False
    wallet: str | None = None
    timeout: float = 30

    @property
    def base_url(self) -> str:
        scheme = "https" if self.use_https else "http"
        return f"{scheme}://{self.host}:{self.port}"


@dataclass
class ExplorerConfig:
    network: str = "main"
    token: str | None = None
    base_url: str = BLOCKCYPHER_BASE_URL
    timeout: float = 30


@dataclass
class SpendConfig:
    default_fee_sats: int = DEFAULT_FEE_SATS
    node_backend: str = "rpc"
    bitcoin_cli: str = "bitcoin-cli"
    reconcile_workers: int = 1


@dataclass
class AppConfig:
    """Everything a single dspend command needs, passed explicitly."""

    rpc: RPCConfig | None
    explorer: ExplorerConfig = field(default_factory=ExplorerConfig)
    spend: SpendConfig = field(default_factory=SpendConfig)

    @property
    def network(self) -> str:
        return self.explorer.network


def _load_config_file(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigurationError(f"Config file not found: {path}")
        return {}

    try:
        loaded = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - delegated to PyYAML
        raise ConfigurationError(f"Invalid YAML in config file {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ConfigurationError(f"Expected {path} to contain a YAML mapping")
    return loaded


def _section(file_config: Mapping[str, Any], name: str, path: Path) -> dict[str, Any]:
    section = file_config.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"Expected '{name}' to be a mapping in {path}")
    return section


def _coerce_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "y", "on"}:
            return True
        if normalized in {"0", "false", "no", "n", "off"}:
            return False
    return None


def _coerce_int(raw: Any, *, source: str, minimum: int = 0) -> int | None:
    if raw is None:
        return None
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid integer in {source}: {raw}") from exc
    if value < minimum:
        raise ConfigurationError(f"Value in {source} must be >= {minimum}: {raw}")
    return value


def _coerce_float(raw: Any, *, source: str) -> float | None:
    if raw is None:
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid number in {source}: {raw}") from exc
    if not value > 0:
        raise ConfigurationError(f"Value in {source} must be > 0: {raw}")
    return value


def _first_value(*values: Any, default: Any = None) -> Any:
    for value in values:
        if value is not None:
            return value
    return default


def _env(env_map: Mapping[str, str], *names: str) -> str | None:
    for name in names:
        value = env_map.get(name)
        if value:
            return value
    return None


def _parse_endpoint(raw: str | None) -> tuple[str | None, int | None, bool | None]:
    if not raw:
        return None, None, None
    parsed = urlparse(raw)
    if not parsed.scheme or not parsed.hostname:
        raise ConfigurationError(f"Invalid RPC endpoint URL: {raw}")
    try:
        port = parsed.port
    except ValueError as exc:
        raise ConfigurationError(f"Invalid port in RPC endpoint URL: {raw}") from exc
    return parsed.hostname, port, parsed.scheme.lower() == "https"


def _resolve_network(testnet: bool, *candidates: Any) -> str:
    if testnet:
        return "test"
    network = str(_first_value(*candidates, default="main")).lower()
    if network in {"testnet", "test3"}:
        network = "test"
    if network not in NETWORKS:
        raise ConfigurationError(f"Unknown network '{network}'; expected one of {', '.join(NETWORKS)}")
    return network


def load_config(
    *,
    config_path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
    testnet: bool = False,
) -> AppConfig:
    """Load configuration from overrides, environment variables and optional YAML.

    ``overrides`` uses flat keys as produced by the CLI: ``endpoint``,
    ``user``, ``password``, ``host``, ``port``, ``wallet``, ``use_https``,
    ``network``, ``backend``, ``default_fee_sats``, ``explorer_token``.
    """

    env_map = os.environ if env is None else env
    path = Path(config_path).expanduser() if config_path is not None else DEFAULT_CONFIG_PATH
    file_config = _load_config_file(path, required=config_path is not None)
    rpc_section = _section(file_config, "rpc", path)
    explorer_section = _section(file_config, "explorer", path)
    spend_section = _section(file_config, "spend", path)
    override_map = dict(overrides or {})

    network = _resolve_network(
        testnet,
        override_map.get("network"),
        _env(env_map, "DSPEND_NETWORK"),
        explorer_section.get("network"),
        file_config.get("network"),
    )

    spend = SpendConfig(
        default_fee_sats=_first_value(
            _coerce_int(override_map.get("default_fee_sats"), source="overrides"),
            _coerce_int(_env(env_map, "DSPEND_DEFAULT_FEE_SATS"), source="environment"),
            _coerce_int(spend_section.get("default_fee_sats"), source=f"{path} spend.default_fee_sats"),
            DEFAULT_FEE_SATS,
        ),
        node_backend=str(
            _first_value(
                override_map.get("backend"),
                _env(env_map, "DSPEND_NODE_BACKEND"),
                spend_section.get("node_backend"),
                "rpc",
            )
        ).lower(),
        bitcoin_cli=str(
            _first_value(_env(env_map, "DSPEND_BITCOIN_CLI"), spend_section.get("bitcoin_cli"), "bitcoin-cli")
        ),
        reconcile_workers=_first_value(
            _coerce_int(override_map.get("reconcile_workers"), source="overrides", minimum=1),
            _coerce_int(_env(env_map, "DSPEND_RECONCILE_WORKERS"), source="environment", minimum=1),
            _coerce_int(
                spend_section.get("reconcile_workers"),
                source=f"{path} spend.reconcile_workers",
                minimum=1,
            ),
            1,
        ),
    )
    if spend.node_backend not in NODE_BACKENDS:
        raise ConfigurationError(
            f"Unknown node backend '{spend.node_backend}'; expected one of {', '.join(NODE_BACKENDS)}"
        )

    explorer = ExplorerConfig(
        network=network,
        token=_first_value(
            override_map.get("explorer_token"),
            _env(env_map, "DSPEND_EXPLORER_TOKEN", "BLOCKCYPHER_API_KEY"),
            explorer_section.get("token"),
        ),
        base_url=str(
            _first_value(
                _env(env_map, "DSPEND_EXPLORER_URL"), explorer_section.get("base_url"), BLOCKCYPHER_BASE_URL
            )
        ).rstrip("/"),
        timeout=_first_value(
            _coerce_float(explorer_section.get("timeout"), source=f"{path} explorer.timeout"), default=30.0
        ),
    )

    rpc = _resolve_rpc_config(
        env_map,
        rpc_section,
        override_map,
        network=network,
        required=spend.node_backend == "rpc",
        path=path,
    )
    return AppConfig(rpc=rpc, explorer=explorer, spend=spend)


def _resolve_rpc_config(
    env_map: Mapping[str, str],
    rpc_section: Mapping[str, Any],
    override_map: Mapping[str, Any],
    *,
    network: str,
    required: bool,
    path: Path,
) -> RPCConfig | None:
    endpoint_host, endpoint_port, endpoint_use_https = _parse_endpoint(
        _first_value(
            override_map.get("endpoint"),
            _env(env_map, "DSPEND_RPC_URL", "DSPEND_RPC_ENDPOINT"),
            rpc_section.get("endpoint"),
        )
    )

    resolved_user = _first_value(
        override_map.get("user"), _env(env_map, "DSPEND_RPC_USER", "RPC_USER"), rpc_section.get("user")
    )
    resolved_password = _first_value(
        override_map.get("password"),
        _env(env_map, "DSPEND_RPC_PASSWORD", "RPC_PASS"),
        rpc_section.get("password"),
    )
    if not resolved_user or not resolved_password:
        if not required:
            return None
        raise ConfigurationError(
            "RPC credentials must be provided via DSPEND_RPC_USER/DSPEND_RPC_PASSWORD "
            "(or RPC_USER/RPC_PASS), --rpc-user/--rpc-password, or a config file"
        )

    resolved_port = _first_value(
        _coerce_int(override_map.get("port"), source="overrides", minimum=1),
        endpoint_port,
        _coerce_int(_env(env_map, "DSPEND_RPC_PORT"), source="environment", minimum=1),
        _coerce_int(rpc_section.get("port"), source=f"{path} rpc.port", minimum=1),
        DEFAULT_RPC_PORTS[network],
    )
    resolved_use_https = _first_value(
        _coerce_bool(override_map.get("use_https")),
        endpoint_use_https,
        _coerce_bool(_env(env_map, "DSPEND_RPC_USE_HTTPS")),
        _coerce_bool(rpc_section.get("use_https")),
        False,
    )
    return RPCConfig(
        user=str(resolved_user),
        password=str(resolved_password),
        host=_first_value(
            override_map.get("host"),
            endpoint_host,
            _env(env_map, "DSPEND_RPC_HOST"),
            rpc_section.get("host"),
            "127.0.0.1",
        ),
        port=resolved_port,
        use_https=bool(resolved_use_https),
        wallet=_first_value(
            override_map.get("wallet"), _env(env_map, "DSPEND_RPC_WALLET"), rpc_section.get("wallet")
        ),
        timeout=_first_value(
            _coerce_float(rpc_section.get("timeout"), source=f"{path} rpc.timeout"), default=30.0
        ),
    )
