from __future__ import annotations

import logging
import time
from typing import Optional

from prometheus_client import CollectorRegistry, Gauge

from .context import Context
from .rpc import COMMITMENT_CONFIRMED
from .types import EpochInfo, ExporterError, FatalError

log = logging.getLogger("solana-exporter.slots")

DEFAULT_SLOT_PACE = 1.0


class SlotWatcher:
    """Follows the cluster's slot and epoch progress on its own cadence.

    The watcher publishes its own gauge families on the registry it is given
    and shares no state with scrapes.
    """

    def __init__(self, provider, registry: Optional[CollectorRegistry] = None):
        self.provider = provider
        self.current_epoch: Optional[int] = None
        self.slot_height = Gauge(
            "solana_slot_height",
            "The current slot number",
            registry=registry,
        )
        self.epoch_number = Gauge(
            "solana_epoch_number",
            "The current epoch number",
            registry=registry,
        )
        self.epoch_first_slot = Gauge(
            "solana_epoch_first_slot",
            "Current epoch's first slot [inclusive]",
            registry=registry,
        )
        self.epoch_last_slot = Gauge(
            "solana_epoch_last_slot",
            "Current epoch's last slot [inclusive]",
            registry=registry,
        )
        self.total_transactions = Gauge(
            "solana_total_transactions",
            "Total number of transactions processed without error since genesis",
            registry=registry,
        )

    def track(self, epoch_info: EpochInfo) -> None:
        if self.current_epoch is None:
            log.info(
                f"starting at epoch {epoch_info.epoch} "
                f"(slots {epoch_info.first_slot}-{epoch_info.last_slot})"
            )
        elif epoch_info.epoch > self.current_epoch:
            log.info(f"new epoch {epoch_info.epoch} (previous {self.current_epoch})")
        self.current_epoch = epoch_info.epoch

        self.slot_height.set(epoch_info.absolute_slot)
        self.epoch_number.set(epoch_info.epoch)
        self.epoch_first_slot.set(epoch_info.first_slot)
        self.epoch_last_slot.set(epoch_info.last_slot)
        if epoch_info.transaction_count is not None:
            self.total_transactions.set(epoch_info.transaction_count)

    def poll(self, ctx: Context) -> None:
        self.track(self.provider.get_epoch_info(ctx, COMMITMENT_CONFIRMED))

    def watch_slots(self, ctx: Context, pace: float = DEFAULT_SLOT_PACE) -> None:
        """Poll epoch info every ``pace`` seconds until ``ctx`` is cancelled."""
        log.info(f"starting slot watcher with {pace}s pace")
        while not ctx.cancelled:
            start_time = time.monotonic()
            try:
                self.poll(ctx)
            except FatalError:
                raise
            except ExporterError as e:
                if ctx.cancelled:
                    break
                log.error(f"failed to get epoch info: {e}")
            except Exception:
                log.exception("unexpected error in slot watcher")

            if ctx.wait(max(0.0, pace - (time.monotonic() - start_time))):
                break
        log.info("slot watcher stopped")
