"""Classification of getHealth failures.

A failing getHealth call falls into one of three tiers:

- transport errors, and RPC errors without a payload, are unclassified: the
  health families are unavailable for this scrape;
- an RPC error whose payload decodes as node-unhealthy data is an expected
  condition, reported as ``HealthResult.unhealthy``;
- a payload that does not decode means the node's error format changed and
  raises ``ProtocolMismatchError``, which terminates the exporter.
"""
from __future__ import annotations

from typing import Optional

from .rpc import NODE_UNHEALTHY_SCHEMA, unpack_error_data
from .types import HealthResult, RPCError, UnclassifiedHealthError


def unpack_node_unhealthy(err: RPCError) -> int:
    data = unpack_error_data(err, NODE_UNHEALTHY_SCHEMA)
    # numSlotsBehind is null when the node cannot tell how far behind it is
    return data["numSlotsBehind"] or 0


def classify_health(err: Optional[BaseException]) -> HealthResult:
    """Turn the outcome of a getHealth call into a ``HealthResult``.

    Args:
        err: The exception raised by getHealth, or None if it succeeded.

    Raises:
        UnclassifiedHealthError: for transport errors and payload-less RPC errors.
        ProtocolMismatchError: if the RPC error payload cannot be decoded.
    """
    if err is None:
        return HealthResult.healthy()
    if not isinstance(err, RPCError) or err.data is None:
        raise UnclassifiedHealthError(err)
    return HealthResult.unhealthy(unpack_node_unhealthy(err))
