"""Shared type and exception definitions for the exporter."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Optional


class ExporterError(Exception):
    """Base exception for exporter errors."""
    pass


class RPCError(ExporterError):
    """Raised when the node answers with a JSON-RPC error object.

    ``data`` holds the optional secondary payload exactly as decoded from
    the response; it is left opaque until a caller unpacks it.
    """
    def __init__(self, method: str, code: int, message: str, data: Any = None):
        self.method = method
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"rpc {method} error {code}: {message}")


class TransportError(ExporterError):
    """Raised when a request never produced a JSON-RPC response."""
    def __init__(self, method: str, reason: str):
        self.method = method
        self.reason = reason
        super().__init__(f"rpc {method} transport error: {reason}")


class MalformedResponseError(ExporterError):
    """Raised when a JSON-RPC result does not have the expected shape."""
    pass


class ContextCancelledError(ExporterError):
    """Raised when work is attempted on a cancelled context."""
    pass


class UnclassifiedHealthError(ExporterError):
    """Raised when a getHealth failure carries no node-unhealthy payload."""
    def __init__(self, cause: BaseException):
        self.cause = cause
        super().__init__(str(cause))


class ConfigurationError(ExporterError):
    """Raised when command line or environment settings are invalid."""
    pass


class FatalError(ExporterError):
    """Errors the exporter must not degrade from; the process exits."""
    pass


class LabelCountError(FatalError):
    """Raised when an observation is built with the wrong number of labels."""
    pass


class ProtocolMismatchError(FatalError):
    """Raised when an RPC error payload no longer matches the known shape."""
    pass


CURRENT = "current"
DELINQUENT = "delinquent"


@dataclass(frozen=True)
class VoteAccount:
    """One entry of a getVoteAccounts response."""
    vote_pubkey: str
    node_pubkey: str
    activated_stake: int
    last_vote: int
    root_slot: int

    @classmethod
    def from_dict(cls, raw: dict) -> "VoteAccount":
        try:
            return cls(
                vote_pubkey=str(raw["votePubkey"]),
                node_pubkey=str(raw["nodePubkey"]),
                activated_stake=int(raw["activatedStake"]),
                last_vote=int(raw["lastVote"]),
                root_slot=int(raw["rootSlot"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedResponseError(f"invalid vote account {raw!r}: {e}") from e


@dataclass(frozen=True)
class VoteAccounts:
    """Vote accounts split into the current and delinquent partitions."""
    current: List[VoteAccount] = field(default_factory=list)
    delinquent: List[VoteAccount] = field(default_factory=list)

    def all(self) -> List[VoteAccount]:
        return list(self.current) + list(self.delinquent)


@dataclass(frozen=True)
class HealthResult:
    """Outcome of a getHealth call once its error has been classified."""
    is_healthy: bool
    num_slots_behind: int = 0

    @classmethod
    def healthy(cls) -> "HealthResult":
        return cls(is_healthy=True)

    @classmethod
    def unhealthy(cls, num_slots_behind: int) -> "HealthResult":
        return cls(is_healthy=False, num_slots_behind=num_slots_behind)


@dataclass(frozen=True)
class EpochInfo:
    """Subset of a getEpochInfo response used by the slot watcher."""
    epoch: int
    slot_index: int
    slots_in_epoch: int
    absolute_slot: int
    block_height: int
    transaction_count: Optional[int] = None

    @property
    def first_slot(self) -> int:
        return self.absolute_slot - self.slot_index

    @property
    def last_slot(self) -> int:
        return self.first_slot + self.slots_in_epoch - 1
