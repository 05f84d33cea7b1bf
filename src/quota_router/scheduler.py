# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/quota_router/scheduler.py

import asyncio
import logging
import time
from typing import Callable, Dict, Optional

from .core.constants import DEFAULT_SWEEP_INTERVAL
from .core.types import QuotaPeriod
from .registry.base import AccountRegistry
from .usage.recorder import ConsumptionRecorder

lib_logger = logging.getLogger("quota_router")


class ResetScheduler:
    """
    Periodic sweep that rolls elapsed quota windows of idle accounts.

    Tiers already roll lazily whenever they are read or written, so this
    sweep only keeps dashboards and persisted counters fresh for accounts
    nobody is calling, and logs when a blocked account is reinstated.
    """

    def __init__(
        self,
        registry: AccountRegistry,
        recorder: ConsumptionRecorder,
        interval: int = DEFAULT_SWEEP_INTERVAL,
        clock: Callable[[], float] = time.time,
    ):
        self._registry = registry
        self._recorder = recorder
        self._interval = interval
        self._clock = clock
        self._task: Optional[asyncio.Task] = None
        # account id -> blocking tier seen by the previous sweep
        self._last_blocking: Dict[str, Optional[QuotaPeriod]] = {}

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Starts the background sweep task."""
        if self._interval <= 0:
            lib_logger.debug("Quota window sweep disabled (interval <= 0)")
            return
        if self._task is None:
            self._task = asyncio.create_task(self._run())
            lib_logger.info(
                f"Quota window sweep started. Interval: {self._interval} seconds."
            )

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            lib_logger.info("Quota window sweep stopped.")

    async def sweep(self) -> int:
        """
        Roll every elapsed window once.

        Returns:
            Number of tiers that were reset
        """
        now = self._clock()
        accounts = await self._registry.list_all_accounts()
        rolled_total = 0
        seen = set()
        for account in accounts:
            seen.add(account.id)
            async with self._recorder.lock_for(account.id):
                rolled = account.roll_windows(now)
                blocking = account.blocking_tier(now)
            rolled_total += len(rolled)

            previous = self._last_blocking.get(account.id)
            if previous is not None and blocking is None and account.enabled:
                lib_logger.info(
                    f"Account '{account.name}' ({account.id}) back in rotation: "
                    f"{previous.value} window reset"
                )
            self._last_blocking[account.id] = blocking

        for stale_id in set(self._last_blocking) - seen:
            del self._last_blocking[stale_id]

        if rolled_total and self._recorder.storage is not None:
            self._recorder.storage.mark_dirty()
            await self._recorder.flush()
        return rolled_total

    async def _run(self) -> None:
        try:
            while True:
                try:
                    rolled = await self.sweep()
                    if rolled:
                        lib_logger.debug(f"Quota sweep reset {rolled} tier(s)")
                except Exception as e:
                    lib_logger.error(f"Error during quota window sweep: {e}")
                await asyncio.sleep(self._interval)
        except asyncio.CancelledError:
            pass
