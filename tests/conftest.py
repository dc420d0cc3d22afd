from __future__ import annotations
from typing import Dict, Optional

import pytest

from solana_exporter.types import EpochInfo, VoteAccount, VoteAccounts


class StubProvider:
    """In-memory stand-in for RPCClient.

    Each attribute holds either the value to return or an exception to raise.
    """

    def __init__(self):
        self.vote_accounts = VoteAccounts(
            current=[VoteAccount("V1", "N1", 100, 50, 40)],
            delinquent=[],
        )
        self.version = "1.18.22"
        self.health = "ok"
        self.minimum_ledger_slot = 1000
        self.first_available_block = 1100
        self.balances: Dict[str, object] = {}
        self.identity = "ID1"
        self.epoch_info = EpochInfo(
            epoch=10, slot_index=20, slots_in_epoch=432000,
            absolute_slot=4320020, block_height=4000000, transaction_count=777,
        )
        self.calls = []

    def _answer(self, name: str, value):
        self.calls.append(name)
        if isinstance(value, BaseException):
            raise value
        return value

    def get_vote_accounts(self, ctx, commitment, vote_pubkey: Optional[str] = None):
        return self._answer("getVoteAccounts", self.vote_accounts)

    def get_version(self, ctx):
        return self._answer("getVersion", self.version)

    def get_health(self, ctx):
        return self._answer("getHealth", self.health)

    def get_minimum_ledger_slot(self, ctx):
        return self._answer("minimumLedgerSlot", self.minimum_ledger_slot)

    def get_first_available_block(self, ctx):
        return self._answer("getFirstAvailableBlock", self.first_available_block)

    def get_balance(self, ctx, address):
        return self._answer("getBalance", self.balances[address])

    def get_identity(self, ctx):
        return self._answer("getIdentity", self.identity)

    def get_epoch_info(self, ctx, commitment):
        return self._answer("getEpochInfo", self.epoch_info)


@pytest.fixture
def provider() -> StubProvider:
    return StubProvider()
