from __future__ import annotations

import importlib.resources as ir
import itertools
import http.client
import json
import logging
import socket
from functools import lru_cache
from typing import Any, Dict, List, Optional
from urllib import request, error as urlerror

import jsonschema

from .context import Context
from .types import (
    CURRENT,
    DELINQUENT,
    EpochInfo,
    MalformedResponseError,
    ProtocolMismatchError,
    RPCError,
    TransportError,
    VoteAccount,
    VoteAccounts,
)

log = logging.getLogger("solana-exporter.rpc")

DEFAULT_RPC = "http://localhost:8899"
DEFAULT_TIMEOUT = 60.0

COMMITMENT_PROCESSED = "processed"
COMMITMENT_CONFIRMED = "confirmed"
COMMITMENT_FINALIZED = "finalized"

LAMPORTS_PER_SOL = 1_000_000_000

NODE_UNHEALTHY_SCHEMA = "node_unhealthy"


@lru_cache(maxsize=None)
def bundled_schema(name: str) -> Dict[str, Any]:
    with ir.as_file(ir.files(__package__) / "data" / f"{name}.schema.json") as p:
        with open(p, "r", encoding="utf-8") as f:
            return json.load(f)


def unpack_error_data(err: RPCError, schema_name: str) -> Dict[str, Any]:
    """Validate the secondary payload of ``err`` against a bundled schema.

    Raises:
        ProtocolMismatchError: if the payload does not match the schema.
    """
    try:
        jsonschema.validate(instance=err.data, schema=bundled_schema(schema_name))
    except jsonschema.ValidationError as e:
        raise ProtocolMismatchError(
            f"failed to unpack {err.method} rpc error data {err.data!r}: {e.message}"
        ) from e
    return err.data


class RPCClient:
    """Minimal JSON-RPC 2.0 client for a Solana node.

    Every call takes the caller's ``Context``; a cancelled context aborts the
    call before the request is sent, and a response that arrives after
    cancellation is discarded.
    """

    def __init__(self, rpc_url: str = DEFAULT_RPC, timeout: float = DEFAULT_TIMEOUT):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self._ids = itertools.count(1)

    def _post(self, method: str, payload: bytes) -> Dict[str, Any]:
        req = request.Request(
            self.rpc_url,
            data=payload,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
        )
        try:
            with request.urlopen(req, timeout=self.timeout) as resp:
                raw = resp.read()
        except urlerror.HTTPError as e:
            # Some providers send JSON-RPC errors with a non-2xx status.
            try:
                body = json.loads(e.read().decode())
            except Exception:
                raise TransportError(method, f"HTTP {e.code} for {self.rpc_url}: {e.reason}") from e
            if isinstance(body, dict) and "error" in body:
                return body
            raise TransportError(method, f"HTTP {e.code} for {self.rpc_url}: {e.reason}") from e
        except http.client.HTTPException as e:
            # Truncated bodies and garbled status lines are not OSErrors.
            raise TransportError(method, f"bad HTTP response (url={self.rpc_url}): {e!r}") from e
        except socket.timeout as e:
            raise TransportError(method, f"timeout after {self.timeout}s (url={self.rpc_url})") from e
        except urlerror.URLError as e:
            reason = getattr(e, "reason", e)
            raise TransportError(method, f"connection error (url={self.rpc_url}): {reason}") from e
        except OSError as e:
            raise TransportError(method, f"connection error (url={self.rpc_url}): {e}") from e

        try:
            body = json.loads(raw.decode())
        except (UnicodeDecodeError, ValueError) as e:
            raise TransportError(method, f"response is not JSON: {e}") from e
        if not isinstance(body, dict):
            raise TransportError(method, f"unexpected response body {body!r}")
        return body

    def call(self, ctx: Context, method: str, params: Optional[List[Any]] = None) -> Any:
        """Send one request and return its ``result`` member.

        Raises:
            ContextCancelledError: if ``ctx`` is cancelled before or during the call.
            RPCError: if the node answered with a JSON-RPC error.
            TransportError: if no JSON-RPC response was obtained.
        """
        ctx.raise_if_cancelled()
        payload = json.dumps({
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }).encode()
        log.debug(f"rpc request {method} params={params}")
        body = self._post(method, payload)
        ctx.raise_if_cancelled()

        if "error" in body and body["error"] is not None:
            rpc_err = body["error"]
            if not isinstance(rpc_err, dict):
                raise RPCError(method, -1, str(rpc_err))
            code = rpc_err.get("code", -1)
            if isinstance(code, bool) or not isinstance(code, int):
                raise MalformedResponseError(f"rpc {method} error has invalid code: {rpc_err!r}")
            raise RPCError(method, code, str(rpc_err.get("message", "")), rpc_err.get("data"))
        if "result" not in body:
            raise MalformedResponseError(f"rpc {method} response has no result: {body!r}")
        return body["result"]

    def _call_int(self, ctx: Context, method: str, params: Optional[List[Any]] = None) -> int:
        res = self.call(ctx, method, params)
        if isinstance(res, bool) or not isinstance(res, int):
            raise MalformedResponseError(f"rpc {method} returned non-integer {res!r}")
        return res

    def get_vote_accounts(
        self, ctx: Context, commitment: str, vote_pubkey: Optional[str] = None
    ) -> VoteAccounts:
        config: Dict[str, Any] = {"commitment": commitment}
        if vote_pubkey is not None:
            config["votePubkey"] = vote_pubkey
        res = self.call(ctx, "getVoteAccounts", [config])
        if not isinstance(res, dict):
            raise MalformedResponseError(f"rpc getVoteAccounts returned {res!r}")
        partitions = {}
        for state in (CURRENT, DELINQUENT):
            accounts = res.get(state) or []
            if not isinstance(accounts, list):
                raise MalformedResponseError(f"rpc getVoteAccounts returned {state}={accounts!r}")
            partitions[state] = [VoteAccount.from_dict(a) for a in accounts]
        return VoteAccounts(current=partitions[CURRENT], delinquent=partitions[DELINQUENT])

    def get_version(self, ctx: Context) -> str:
        res = self.call(ctx, "getVersion")
        try:
            return str(res["solana-core"])
        except (KeyError, TypeError) as e:
            raise MalformedResponseError(f"rpc getVersion returned {res!r}") from e

    def get_health(self, ctx: Context) -> str:
        """Return ``"ok"``; an unhealthy node surfaces as an ``RPCError``."""
        return str(self.call(ctx, "getHealth"))

    def get_minimum_ledger_slot(self, ctx: Context) -> int:
        return self._call_int(ctx, "minimumLedgerSlot")

    def get_first_available_block(self, ctx: Context) -> int:
        return self._call_int(ctx, "getFirstAvailableBlock")

    def get_balance(self, ctx: Context, address: str) -> int:
        """Return the balance of ``address`` in lamports."""
        res = self.call(ctx, "getBalance", [address])
        try:
            value = res["value"]
        except (KeyError, TypeError) as e:
            raise MalformedResponseError(f"rpc getBalance returned {res!r}") from e
        if isinstance(value, bool) or not isinstance(value, int):
            raise MalformedResponseError(f"rpc getBalance returned non-integer {value!r}")
        return value

    def get_identity(self, ctx: Context) -> str:
        res = self.call(ctx, "getIdentity")
        try:
            return str(res["identity"])
        except (KeyError, TypeError) as e:
            raise MalformedResponseError(f"rpc getIdentity returned {res!r}") from e

    def get_epoch_info(self, ctx: Context, commitment: str) -> EpochInfo:
        res = self.call(ctx, "getEpochInfo", [{"commitment": commitment}])
        try:
            transaction_count = res.get("transactionCount")
            return EpochInfo(
                epoch=int(res["epoch"]),
                slot_index=int(res["slotIndex"]),
                slots_in_epoch=int(res["slotsInEpoch"]),
                absolute_slot=int(res["absoluteSlot"]),
                block_height=int(res["blockHeight"]),
                transaction_count=None if transaction_count is None else int(transaction_count),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise MalformedResponseError(f"rpc getEpochInfo returned {res!r}") from e
