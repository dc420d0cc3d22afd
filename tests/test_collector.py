from __future__ import annotations
import http.client
import json
from collections import defaultdict
from unittest.mock import MagicMock, patch

import pytest
from prometheus_client import CollectorRegistry, generate_latest

from solana_exporter.collector import SolanaCollector
from solana_exporter.context import Context
from solana_exporter.rpc import RPCClient
from solana_exporter.types import (
    ProtocolMismatchError,
    RPCError,
    TransportError,
    VoteAccount,
    VoteAccounts,
)

VOTE_FAMILIES = {
    "solana_validator_active",
    "solana_validator_active_stake",
    "solana_validator_last_vote",
    "solana_validator_root_slot",
    "solana_validator_delinquent",
}


def _by_family(observations):
    grouped = defaultdict(list)
    for obs in observations:
        grouped[obs.descriptor.name].append(obs)
    return grouped


def _samples(observations, name):
    return {
        o.label_values: o.value
        for o in observations
        if o.descriptor.name == name and not o.is_failure
    }


def test_single_current_validator_scenario(provider):
    collector = SolanaCollector(provider, "ID1")
    obs = collector.scrape()

    assert _samples(obs, "solana_validator_active") == {("current",): 1, ("delinquent",): 0}
    assert _samples(obs, "solana_validator_active_stake") == {("V1", "N1"): 100}
    assert _samples(obs, "solana_validator_last_vote") == {("V1", "N1"): 50}
    assert _samples(obs, "solana_validator_root_slot") == {("V1", "N1"): 40}
    assert _samples(obs, "solana_validator_delinquent") == {("V1", "N1"): 0}


def test_active_counts_and_delinquency(provider):
    provider.vote_accounts = VoteAccounts(
        current=[VoteAccount("V1", "N1", 1, 2, 3), VoteAccount("V2", "N2", 4, 5, 6)],
        delinquent=[VoteAccount("V3", "N3", 7, 8, 9)],
    )
    obs = SolanaCollector(provider, "ID1").scrape()

    active = [o for o in obs if o.descriptor.name == "solana_validator_active"]
    assert len(active) == 2
    assert sum(o.value for o in active) == 3
    assert _samples(obs, "solana_validator_delinquent") == {
        ("V1", "N1"): 0,
        ("V2", "N2"): 0,
        ("V3", "N3"): 1,
    }
    assert len(_samples(obs, "solana_validator_active_stake")) == 3


def test_vote_accounts_failure_is_isolated(provider):
    err = TransportError("getVoteAccounts", "connection refused")
    provider.vote_accounts = err
    grouped = _by_family(SolanaCollector(provider, "ID1").scrape())

    for name in VOTE_FAMILIES:
        assert len(grouped[name]) == 1
        assert grouped[name][0].is_failure
        assert grouped[name][0].error is err

    for name in ("solana_node_version", "solana_node_is_healthy", "solana_node_num_slots_behind",
                 "solana_node_minimum_ledger_slot", "solana_node_first_available_block"):
        assert grouped[name]
        assert not any(o.is_failure for o in grouped[name])


def test_version_is_a_label(provider):
    obs = SolanaCollector(provider, "ID1").scrape()
    assert _samples(obs, "solana_node_version") == {("1.18.22",): 1}


def test_node_bounds_use_identity(provider):
    obs = SolanaCollector(provider, "ID1").scrape()
    assert _samples(obs, "solana_node_minimum_ledger_slot") == {("ID1",): 1000}
    assert _samples(obs, "solana_node_first_available_block") == {("ID1",): 1100}


def test_healthy_node(provider):
    obs = SolanaCollector(provider, "ID1").scrape()
    assert _samples(obs, "solana_node_is_healthy") == {("ID1",): 1}
    assert _samples(obs, "solana_node_num_slots_behind") == {("ID1",): 0}


def test_unhealthy_node(provider):
    provider.health = RPCError("getHealth", -32005, "Node is behind by 7 slots", {"numSlotsBehind": 7})
    obs = SolanaCollector(provider, "ID1").scrape()
    assert _samples(obs, "solana_node_is_healthy") == {("ID1",): 0}
    assert _samples(obs, "solana_node_num_slots_behind") == {("ID1",): 7}


@pytest.mark.parametrize("err", [
    TransportError("getHealth", "timeout after 60s"),
    RPCError("getHealth", -32603, "Internal error"),
])
def test_unclassified_health_error_emits_sentinels(provider, err):
    provider.health = err
    grouped = _by_family(SolanaCollector(provider, "ID1").scrape())
    for name in ("solana_node_is_healthy", "solana_node_num_slots_behind"):
        assert len(grouped[name]) == 1
        assert grouped[name][0].is_failure
    assert not any(o.is_failure for o in grouped["solana_validator_active"])


def test_undecodable_health_payload_is_fatal(provider):
    provider.health = RPCError("getHealth", -32005, "Node is unhealthy", {"numSlotsBehind": "x"})
    with pytest.raises(ProtocolMismatchError):
        SolanaCollector(provider, "ID1").scrape()


def test_balances_cover_address_set(provider):
    provider.balances = {"A": 1_500_000_000, "B": 0, "N1": 2_000_000_000, "V1": 10}
    collector = SolanaCollector(
        provider, "ID1", balance_addresses=["A", "B", "A"], nodekeys=["N1"], votekeys=["V1"]
    )
    obs = collector.scrape()
    assert _samples(obs, "solana_account_balance") == {
        ("A",): 1.5,
        ("B",): 0,
        ("N1",): 2.0,
        ("V1",): 1e-8,
    }


def test_balance_failure_never_leaks_partial_samples(provider):
    provider.balances = {"A": 1, "B": TransportError("getBalance", "timeout after 60s")}
    obs = SolanaCollector(provider, "ID1", balance_addresses=["A", "B"]).scrape()
    balances = [o for o in obs if o.descriptor.name == "solana_account_balance"]
    assert len(balances) == 1
    assert balances[0].is_failure


def test_every_sub_collection_runs_when_all_fail(provider):
    for attr in ("vote_accounts", "version", "health", "minimum_ledger_slot", "first_available_block"):
        setattr(provider, attr, TransportError(attr, "connection refused"))
    obs = SolanaCollector(provider, "ID1").scrape()
    assert all(o.is_failure for o in obs)
    assert {o.descriptor.name for o in obs} == VOTE_FAMILIES | {
        "solana_node_version",
        "solana_node_is_healthy",
        "solana_node_num_slots_behind",
        "solana_node_minimum_ledger_slot",
        "solana_node_first_available_block",
    }


def test_cancelled_parent_fails_every_family():
    class CancellingProvider:
        def __getattr__(self, name):
            def call(ctx, *args):
                ctx.raise_if_cancelled()
                raise AssertionError("call should have been cancelled")
            return call

    parent = Context()
    parent.cancel()
    collector = SolanaCollector(CancellingProvider(), "ID1", balance_addresses=["A"])
    obs = collector.scrape(parent)
    assert obs
    assert all(o.is_failure for o in obs)
    assert len(obs) == len(collector.descriptors)


def test_scrape_context_released_on_exit(provider):
    parent = Context()
    seen = []
    original = provider.get_version

    def get_version(ctx):
        seen.append(ctx)
        return original(ctx)

    provider.get_version = get_version
    SolanaCollector(provider, "ID1").scrape(parent)
    assert seen[0].cancelled
    assert not parent.cancelled


def test_exposition_renders_failed_family_without_samples(provider):
    provider.vote_accounts = TransportError("getVoteAccounts", "connection refused")
    registry = CollectorRegistry()
    registry.register(SolanaCollector(provider, "ID1"))

    text = generate_latest(registry).decode()
    assert "# TYPE solana_validator_active gauge" in text
    assert "solana_validator_active{" not in text
    assert 'solana_node_version{version="1.18.22"} 1.0' in text
    assert 'solana_node_is_healthy{identity="ID1"} 1.0' in text


def test_describe_does_not_touch_the_node(provider):
    registry = CollectorRegistry()
    registry.register(SolanaCollector(provider, "ID1"))
    assert provider.calls == []


NODE_RESULTS = {
    "getVoteAccounts": {"current": [], "delinquent": []},
    "getVersion": {"solana-core": "1.18.22"},
    "getHealth": "ok",
    "minimumLedgerSlot": 1000,
    "getFirstAvailableBlock": 1100,
}


def _node(broken):
    """Answer JSON-RPC requests from NODE_RESULTS; ``broken`` maps a method to its reply or exception."""
    def urlopen(req, timeout=None):
        method = json.loads(req.data.decode())["method"]
        reply = broken.get(method, {"jsonrpc": "2.0", "id": 1, "result": NODE_RESULTS.get(method)})
        if isinstance(reply, BaseException):
            raise reply
        resp = MagicMock()
        resp.read.return_value = json.dumps(reply).encode()
        resp.__enter__.return_value = resp
        return resp
    return urlopen


@patch("solana_exporter.rpc.request.urlopen")
def test_truncated_http_response_fails_only_its_family(mock_urlopen):
    mock_urlopen.side_effect = _node({"getVersion": http.client.IncompleteRead(b"0123456789", 90)})
    grouped = _by_family(SolanaCollector(RPCClient("http://node:8899"), "ID1").scrape())

    assert len(grouped["solana_node_version"]) == 1
    assert grouped["solana_node_version"][0].is_failure
    assert _samples(grouped["solana_node_is_healthy"], "solana_node_is_healthy") == {("ID1",): 1}
    assert _samples(grouped["solana_validator_active"], "solana_validator_active") == {
        ("current",): 0,
        ("delinquent",): 0,
    }
    assert _samples(grouped["solana_node_first_available_block"], "solana_node_first_available_block") == {
        ("ID1",): 1100
    }


@patch("solana_exporter.rpc.request.urlopen")
def test_malformed_replies_fail_only_their_families(mock_urlopen):
    mock_urlopen.side_effect = _node({
        "minimumLedgerSlot": {"jsonrpc": "2.0", "id": 1, "error": {"code": None, "message": "x"}},
        "getVoteAccounts": {"jsonrpc": "2.0", "id": 1, "result": {"current": 5, "delinquent": []}},
    })
    grouped = _by_family(SolanaCollector(RPCClient("http://node:8899"), "ID1").scrape())

    assert all(o.is_failure for o in grouped["solana_node_minimum_ledger_slot"])
    for name in VOTE_FAMILIES:
        assert all(o.is_failure for o in grouped[name])
    assert _samples(grouped["solana_node_version"], "solana_node_version") == {("1.18.22",): 1}
    assert _samples(grouped["solana_node_first_available_block"], "solana_node_first_available_block") == {
        ("ID1",): 1100
    }
