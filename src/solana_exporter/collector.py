from __future__ import annotations

import logging
from typing import Callable, Iterable, Iterator, List, Optional, Sequence

from prometheus_client.core import GaugeMetricFamily

from .accounts import fetch_balances
from .context import Context
from .health import classify_health
from .metrics import MetricDescriptor, Observation, combine_unique
from .rpc import COMMITMENT_CONFIRMED
from .types import CURRENT, DELINQUENT, ExporterError, FatalError

log = logging.getLogger("solana-exporter.collector")

STATE_LABEL = "state"
NODEKEY_LABEL = "nodekey"
VOTEKEY_LABEL = "votekey"
VERSION_LABEL = "version"
ADDRESS_LABEL = "address"
IDENTITY_LABEL = "identity"

SubCollection = Callable[[Context, List[Observation]], None]


class SolanaCollector:
    """Turns one scrape of the node's RPC interface into gauge observations.

    Each sub-collection owns one or more descriptors. A sub-collection that
    fails emits a failure observation for every descriptor it owns and the
    scrape carries on with the next one. Only ``FatalError`` escapes a scrape.
    """

    def __init__(
        self,
        provider,
        identity: str,
        balance_addresses: Iterable[str] = (),
        nodekeys: Iterable[str] = (),
        votekeys: Iterable[str] = (),
        parent: Optional[Context] = None,
    ):
        self.provider = provider
        self.parent = parent
        self.identity = identity
        self.balance_addresses = combine_unique(balance_addresses, nodekeys, votekeys)

        self.validator_active = MetricDescriptor(
            "solana_validator_active",
            f"Total number of active validators, grouped by {STATE_LABEL} "
            f"('{CURRENT}' or '{DELINQUENT}')",
            STATE_LABEL,
        )
        self.validator_active_stake = MetricDescriptor(
            "solana_validator_active_stake",
            f"Active stake per validator (represented by {VOTEKEY_LABEL} and {NODEKEY_LABEL})",
            VOTEKEY_LABEL, NODEKEY_LABEL,
        )
        self.validator_last_vote = MetricDescriptor(
            "solana_validator_last_vote",
            f"Last voted-on slot per validator (represented by {VOTEKEY_LABEL} and {NODEKEY_LABEL})",
            VOTEKEY_LABEL, NODEKEY_LABEL,
        )
        self.validator_root_slot = MetricDescriptor(
            "solana_validator_root_slot",
            f"Root slot per validator (represented by {VOTEKEY_LABEL} and {NODEKEY_LABEL})",
            VOTEKEY_LABEL, NODEKEY_LABEL,
        )
        self.validator_delinquent = MetricDescriptor(
            "solana_validator_delinquent",
            f"Whether a validator (represented by {VOTEKEY_LABEL} and {NODEKEY_LABEL}) is delinquent",
            VOTEKEY_LABEL, NODEKEY_LABEL,
        )
        self.account_balances = MetricDescriptor(
            "solana_account_balance",
            f"Solana account balances, grouped by {ADDRESS_LABEL}",
            ADDRESS_LABEL,
        )
        self.node_version = MetricDescriptor(
            "solana_node_version",
            "Node version of solana",
            VERSION_LABEL,
        )
        self.node_is_healthy = MetricDescriptor(
            "solana_node_is_healthy",
            f"Whether a node ({IDENTITY_LABEL}) is healthy",
            IDENTITY_LABEL,
        )
        self.node_num_slots_behind = MetricDescriptor(
            "solana_node_num_slots_behind",
            f"The number of slots that the node ({IDENTITY_LABEL}) is behind "
            "the latest cluster confirmed slot.",
            IDENTITY_LABEL,
        )
        self.node_minimum_ledger_slot = MetricDescriptor(
            "solana_node_minimum_ledger_slot",
            f"The lowest slot that the node ({IDENTITY_LABEL}) has information about in its ledger.",
            IDENTITY_LABEL,
        )
        self.node_first_available_block = MetricDescriptor(
            "solana_node_first_available_block",
            f"The slot of the lowest confirmed block that has not been purged "
            f"from the node's ({IDENTITY_LABEL}) ledger.",
            IDENTITY_LABEL,
        )

    @property
    def descriptors(self) -> List[MetricDescriptor]:
        return [
            self.validator_active,
            self.validator_active_stake,
            self.validator_last_vote,
            self.validator_root_slot,
            self.validator_delinquent,
            self.account_balances,
            self.node_version,
            self.node_is_healthy,
            self.node_num_slots_behind,
            self.node_minimum_ledger_slot,
            self.node_first_available_block,
        ]

    def _run_isolated(
        self,
        what: str,
        owned: Sequence[MetricDescriptor],
        collect: SubCollection,
        ctx: Context,
        out: List[Observation],
    ) -> None:
        # Buffer so a failure half way through never leaks partial samples.
        produced: List[Observation] = []
        try:
            collect(ctx, produced)
        except FatalError:
            raise
        except ExporterError as e:
            log.error(f"failed to get {what}: {e}")
            out.extend(d.new_failure_observation(e) for d in owned)
            return
        out.extend(produced)

    def collect_vote_accounts(self, ctx: Context, out: List[Observation]) -> None:
        vote_accounts = self.provider.get_vote_accounts(ctx, COMMITMENT_CONFIRMED)

        out.append(self.validator_active.new_observation(len(vote_accounts.delinquent), DELINQUENT))
        out.append(self.validator_active.new_observation(len(vote_accounts.current), CURRENT))

        for account in vote_accounts.all():
            keys = (account.vote_pubkey, account.node_pubkey)
            out.append(self.validator_active_stake.new_observation(account.activated_stake, *keys))
            out.append(self.validator_last_vote.new_observation(account.last_vote, *keys))
            out.append(self.validator_root_slot.new_observation(account.root_slot, *keys))

        for account in vote_accounts.current:
            out.append(self.validator_delinquent.new_observation(0, account.vote_pubkey, account.node_pubkey))
        for account in vote_accounts.delinquent:
            out.append(self.validator_delinquent.new_observation(1, account.vote_pubkey, account.node_pubkey))

    def collect_version(self, ctx: Context, out: List[Observation]) -> None:
        version = self.provider.get_version(ctx)
        out.append(self.node_version.new_observation(1, version))

    def collect_balances(self, ctx: Context, out: List[Observation]) -> None:
        balances = fetch_balances(ctx, self.provider, sorted(self.balance_addresses))
        for address, balance in balances.items():
            out.append(self.account_balances.new_observation(balance, address))

    def collect_health(self, ctx: Context, out: List[Observation]) -> None:
        err: Optional[ExporterError] = None
        try:
            self.provider.get_health(ctx)
        except FatalError:
            raise
        except ExporterError as e:
            err = e
        health = classify_health(err)
        out.append(self.node_is_healthy.new_observation(int(health.is_healthy), self.identity))
        out.append(self.node_num_slots_behind.new_observation(health.num_slots_behind, self.identity))

    def collect_minimum_ledger_slot(self, ctx: Context, out: List[Observation]) -> None:
        slot = self.provider.get_minimum_ledger_slot(ctx)
        out.append(self.node_minimum_ledger_slot.new_observation(slot, self.identity))

    def collect_first_available_block(self, ctx: Context, out: List[Observation]) -> None:
        block = self.provider.get_first_available_block(ctx)
        out.append(self.node_first_available_block.new_observation(block, self.identity))

    def scrape(self, ctx: Optional[Context] = None) -> List[Observation]:
        """Run every sub-collection once and return all observations.

        Args:
            ctx: Parent context; the scrape runs in a child of it that is
                cancelled when the scrape returns.

        Raises:
            FatalError: if the node's protocol no longer matches expectations.
        """
        out: List[Observation] = []
        with (ctx.child() if ctx is not None else Context()) as scrape_ctx:
            self._run_isolated(
                "vote accounts",
                [
                    self.validator_active,
                    self.validator_active_stake,
                    self.validator_last_vote,
                    self.validator_root_slot,
                    self.validator_delinquent,
                ],
                self.collect_vote_accounts, scrape_ctx, out,
            )
            self._run_isolated("version", [self.node_version], self.collect_version, scrape_ctx, out)
            self._run_isolated("balances", [self.account_balances], self.collect_balances, scrape_ctx, out)
            self._run_isolated(
                "health",
                [self.node_is_healthy, self.node_num_slots_behind],
                self.collect_health, scrape_ctx, out,
            )
            self._run_isolated(
                "minimum ledger slot",
                [self.node_minimum_ledger_slot],
                self.collect_minimum_ledger_slot, scrape_ctx, out,
            )
            self._run_isolated(
                "first available block",
                [self.node_first_available_block],
                self.collect_first_available_block, scrape_ctx, out,
            )
        return out

    # prometheus_client custom collector protocol

    def _families(self) -> dict:
        return {
            d.name: GaugeMetricFamily(d.name, d.help, labels=list(d.label_names))
            for d in self.descriptors
        }

    def describe(self) -> Iterator[GaugeMetricFamily]:
        return iter(self._families().values())

    def collect(self) -> Iterator[GaugeMetricFamily]:
        families = self._families()
        for obs in self.scrape(self.parent):
            if obs.is_failure:
                # Rendered as a family without samples.
                continue
            families[obs.descriptor.name].add_metric(list(obs.label_values), obs.value)
        return iter(families.values())
