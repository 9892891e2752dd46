"""
Periodic holder synchronization.

Every tick:
1) Read the tracked asset addresses (fresh from the registry)
2) For each asset, sequentially: fetch its token accounts from the ledger
3) Parse them into holder records
4) Upsert the whole asset's batch in one transaction

A failed fetch skips that asset until the next tick. A failed record is
skipped inside its batch. Nothing raised by a tick stops the scheduler.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable

from core.errors import ConfigError, StorageError
from core.ledger import LedgerError
from core.settings import MIN_SYNC_INTERVAL_S
from holders.parser import parse_observations
from holders.repository import BatchResult, HolderStore

ListAssets = Callable[[], Awaitable[list[str]]]
FetchAccounts = Callable[[str], Awaitable[Iterable[Any]]]

DEFAULT_INTER_ASSET_DELAY_S = 0.1


@dataclass(frozen=True)
class AssetSyncStats:
    asset_address: str
    ok: bool
    upserted: int = 0
    skipped: int = 0
    failed: int = 0
    error: str | None = None


@dataclass
class TickStats:
    started_at: datetime
    duration_s: float = 0.0
    assets_total: int = 0
    assets_synced: int = 0
    assets_failed: int = 0
    upserted: int = 0
    skipped: int = 0
    failed: int = 0
    cancelled: bool = False
    aborted: bool = False
    assets: list[AssetSyncStats] = field(default_factory=list)

    def add(self, stats: AssetSyncStats) -> None:
        self.assets.append(stats)
        if stats.ok:
            self.assets_synced += 1
        else:
            self.assets_failed += 1
        self.upserted += stats.upserted
        self.skipped += stats.skipped
        self.failed += stats.failed

    def summary(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "duration_s": round(self.duration_s, 3),
            "assets_total": self.assets_total,
            "assets_synced": self.assets_synced,
            "assets_failed": self.assets_failed,
            "upserted": self.upserted,
            "skipped": self.skipped,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "aborted": self.aborted,
        }


class SyncWorker:
    """
    Timer-driven sync scheduler.

    Ticks are not single-flighted by default: a slow tick keeps running while
    the next one starts. `single_flight=True` skips a tick instead.
    """

    def __init__(
        self,
        *,
        list_assets: ListAssets,
        store: HolderStore,
        fetch: FetchAccounts,
        interval_s: float,
        inter_asset_delay_s: float = DEFAULT_INTER_ASSET_DELAY_S,
        single_flight: bool = False,
        fetch_retries: int = 0,
        retry_backoff_s: float = 1.0,
        logger: logging.Logger | None = None,
    ) -> None:
        if interval_s < MIN_SYNC_INTERVAL_S:
            raise ConfigError(f"Sync interval must be >= {MIN_SYNC_INTERVAL_S} seconds, got {interval_s}.")
        self._list_assets = list_assets
        self._store = store
        self._fetch = fetch
        self._interval_s = interval_s
        self._inter_asset_delay_s = max(inter_asset_delay_s, 0.0)
        self._single_flight = single_flight
        self._fetch_retries = max(fetch_retries, 0)
        self._retry_backoff_s = max(retry_backoff_s, 0.0)
        self._log = logger or logging.getLogger(__name__)

        self._stopping = asyncio.Event()
        self._loop_task: asyncio.Task | None = None
        self._ticks: set[asyncio.Task] = set()
        self.last_tick: TickStats | None = None

    @property
    def running(self) -> bool:
        return bool(self._ticks)

    @property
    def stopping(self) -> bool:
        return self._stopping.is_set()

    def status(self) -> dict[str, Any]:
        return {
            "state": "running" if self.running else "idle",
            "active_ticks": len(self._ticks),
            "interval_s": self._interval_s,
            "last_tick": self.last_tick.summary() if self.last_tick else None,
        }

    async def _pause(self, seconds: float) -> None:
        # Returns early once stop() is called.
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _fetch_with_retry(self, asset_address: str) -> Iterable[Any]:
        attempt = 0
        while True:
            try:
                return await self._fetch(asset_address)
            except LedgerError as exc:
                if attempt >= self._fetch_retries or self._stopping.is_set():
                    raise
                attempt += 1
                self._log.info(
                    "ledger_fetch_retry asset=%s attempt=%s error=%s",
                    asset_address,
                    attempt,
                    exc,
                )
                await self._pause(self._retry_backoff_s)

    async def sync_asset(self, asset_address: str) -> AssetSyncStats:
        """
        Fetch, parse and upsert the holders of one asset.
        """
        try:
            items = await self._fetch_with_retry(asset_address)
        except (LedgerError, ValueError) as exc:
            self._log.warning("ledger_fetch_failed asset=%s error=%s", asset_address, exc)
            return AssetSyncStats(asset_address=asset_address, ok=False, error=str(exc))

        parsed = parse_observations(asset_address, items)
        skipped = parsed.skipped + parsed.invalid
        if not parsed.records:
            self._log.info("sync_asset_empty asset=%s skipped=%s", asset_address, skipped)
            return AssetSyncStats(asset_address=asset_address, ok=True, skipped=skipped)

        try:
            batch: BatchResult = await self._store.upsert_many(parsed.records)
        except StorageError as exc:
            self._log.error("holder_batch_failed asset=%s error=%s", asset_address, exc)
            return AssetSyncStats(
                asset_address=asset_address,
                ok=False,
                skipped=skipped,
                failed=len(parsed.records),
                error=str(exc),
            )

        self._log.info(
            "sync_asset_done asset=%s upserted=%s skipped=%s failed=%s",
            asset_address,
            batch.upserted,
            skipped,
            batch.failed,
        )
        return AssetSyncStats(
            asset_address=asset_address,
            ok=True,
            upserted=batch.upserted,
            skipped=skipped,
            failed=batch.failed,
        )

    async def run_tick(self) -> TickStats:
        """
        One pass over every tracked asset.
        """
        stats = TickStats(started_at=datetime.now(timezone.utc))
        started = time.monotonic()
        try:
            try:
                addresses = await self._list_assets()
            except Exception:
                stats.aborted = True
                self._log.exception("sync_tick_aborted reason=list_assets_failed")
                return stats

            stats.assets_total = len(addresses)
            if not addresses:
                self._log.info("sync_tick_skipped reason=no_assets")
                return stats

            self._log.info("sync_tick_started assets=%s", len(addresses))
            for i, address in enumerate(addresses):
                if self._stopping.is_set():
                    stats.cancelled = True
                    self._log.info("sync_tick_cancelled processed=%s total=%s", i, len(addresses))
                    break
                stats.add(await self.sync_asset(address))
                if i < len(addresses) - 1 and self._inter_asset_delay_s:
                    await self._pause(self._inter_asset_delay_s)
            return stats
        finally:
            stats.duration_s = time.monotonic() - started
            self.last_tick = stats
            if stats.assets_total and not stats.aborted:
                self._log.info(
                    "sync_tick_done synced=%s failed=%s upserted=%s duration_s=%.3f",
                    stats.assets_synced,
                    stats.assets_failed,
                    stats.upserted,
                    stats.duration_s,
                )

    async def _guarded_tick(self) -> None:
        # Background entrypoint: never raises into the scheduler.
        try:
            await self.run_tick()
        except Exception:
            self._log.exception("sync_tick_crashed")

    def trigger(self) -> asyncio.Task | None:
        """
        Start one tick now. Returns None when the tick is skipped.
        """
        if self._stopping.is_set():
            return None
        if self._single_flight and self._ticks:
            self._log.info("sync_tick_skipped reason=previous_tick_running")
            return None
        task = asyncio.create_task(self._guarded_tick())
        self._ticks.add(task)
        task.add_done_callback(self._ticks.discard)
        return task

    async def _run_loop(self) -> None:
        self._log.info("sync_worker_started interval_s=%s", self._interval_s)
        while not self._stopping.is_set():
            self.trigger()
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self._interval_s)
            except asyncio.TimeoutError:
                continue
        self._log.info("sync_worker_stopped")

    def start(self) -> None:
        if self._loop_task is not None:
            return
        self._stopping.clear()
        self._loop_task = asyncio.create_task(self._run_loop())

    async def stop(self, grace_s: float = 10.0) -> None:
        """
        Stop scheduling ticks and wait up to `grace_s` for in-flight ones.
        """
        self._stopping.set()
        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None

        pending = set(self._ticks)
        if not pending:
            return
        _, still_running = await asyncio.wait(pending, timeout=grace_s)
        for task in still_running:
            task.cancel()
        if still_running:
            self._log.warning("sync_ticks_cancelled count=%s", len(still_running))
            await asyncio.gather(*still_running, return_exceptions=True)
