from __future__ import annotations

import logging
from typing import Dict, Iterable, List

from .context import Context
from .rpc import LAMPORTS_PER_SOL
from .types import ExporterError

log = logging.getLogger("solana-exporter.accounts")


def get_associated_vote_accounts(
    ctx: Context, provider, commitment: str, nodekeys: Iterable[str]
) -> List[str]:
    """Resolve the vote account of every configured node key.

    Returns:
        Vote pubkeys in the order of ``nodekeys``.

    Raises:
        ExporterError: if the lookup fails or a node key has no vote account.
    """
    nodekeys = list(nodekeys)
    if not nodekeys:
        return []

    vote_accounts = provider.get_vote_accounts(ctx, commitment)
    by_node: Dict[str, str] = {}
    for account in vote_accounts.all():
        by_node.setdefault(account.node_pubkey, account.vote_pubkey)

    votekeys: List[str] = []
    for nodekey in nodekeys:
        votekey = by_node.get(nodekey)
        if votekey is None:
            raise ExporterError(f"failed to find vote account for nodekey {nodekey}")
        log.debug(f"nodekey {nodekey} votes with {votekey}")
        votekeys.append(votekey)
    return votekeys


def fetch_balances(ctx: Context, provider, addresses: Iterable[str]) -> Dict[str, float]:
    """Fetch the SOL balance of each address; the first failure is raised."""
    balances: Dict[str, float] = {}
    for address in addresses:
        lamports = provider.get_balance(ctx, address)
        balances[address] = lamports / LAMPORTS_PER_SOL
    return balances
