from __future__ import annotations

import argparse
import os
from dataclasses import dataclass, field
from typing import List

from .rpc import DEFAULT_RPC, DEFAULT_TIMEOUT
from .slots import DEFAULT_SLOT_PACE
from .types import ConfigurationError

RPC_ENV = "SOLANA_RPC_URL"
HOST_ENV = "SOLANA_EXPORTER_HOST"
PORT_ENV = "SOLANA_EXPORTER_PORT"
TIMEOUT_ENV = "SOLANA_EXPORTER_HTTP_TIMEOUT"

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080


def env_default(name: str, default):
    """Environment value for ``name`` converted to the type of ``default``."""
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return type(default)(raw)
    except ValueError as e:
        raise ConfigurationError(f"invalid value for {name}: {raw!r}") from e


@dataclass(frozen=True)
class ExporterConfig:
    rpc_url: str = DEFAULT_RPC
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    http_timeout: float = DEFAULT_TIMEOUT
    nodekeys: List[str] = field(default_factory=list)
    balance_addresses: List[str] = field(default_factory=list)
    slot_pace: float = DEFAULT_SLOT_PACE
    debug: bool = False
    log_level: str = "INFO"

    def __post_init__(self):
        if not self.rpc_url:
            raise ConfigurationError("rpc url must not be empty")
        if not 0 < self.port < 65536:
            raise ConfigurationError(f"port must be between 1 and 65535, got {self.port}")
        if self.http_timeout <= 0:
            raise ConfigurationError(f"http timeout must be positive, got {self.http_timeout}")
        if self.slot_pace <= 0:
            raise ConfigurationError(f"slot pace must be positive, got {self.slot_pace}")

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "ExporterConfig":
        return cls(
            rpc_url=args.rpc_url,
            host=args.host,
            port=args.port,
            http_timeout=args.http_timeout,
            nodekeys=list(args.nodekeys or []),
            balance_addresses=list(args.balance_addresses or []),
            slot_pace=args.slot_pace,
            debug=args.debug,
            log_level=args.log_level,
        )
