# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Consumption recording.

Applies token/request deltas to every tier of an account while holding that
account's lock, the same lock selection takes to re-check the account it
chose. Persistence is scheduled afterwards and never blocks recording.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, Optional

from ..core.constants import DEFAULT_SAVE_DEBOUNCE
from ..quota.account import ProviderAccount
from ..registry.base import AccountRegistry
from .storage import UsageStorage, build_snapshot

lib_logger = logging.getLogger("quota_router")


class ConsumptionRecorder:
    """Per-account serialized usage recording with debounced persistence."""

    def __init__(
        self,
        registry: AccountRegistry,
        storage: Optional[UsageStorage] = None,
        clock: Callable[[], float] = time.time,
        save_debounce: float = DEFAULT_SAVE_DEBOUNCE,
    ):
        self._registry = registry
        self._storage = storage
        self._clock = clock
        self._save_debounce = save_debounce
        self._save_task: Optional[asyncio.Task] = None

        # One lock per account; different accounts never contend
        self._key_locks: Dict[str, asyncio.Lock] = {}

    @property
    def storage(self) -> Optional[UsageStorage]:
        return self._storage

    def lock_for(self, account_id: str) -> asyncio.Lock:
        lock = self._key_locks.get(account_id)
        if lock is None:
            lock = asyncio.Lock()
            self._key_locks[account_id] = lock
        return lock

    def forget(self, account_id: str) -> None:
        """Drop the lock of a deleted account."""
        self._key_locks.pop(account_id, None)

    def apply_locked(
        self,
        account: ProviderAccount,
        tokens_used: int,
        requests_used: int = 1,
        now: Optional[float] = None,
    ) -> None:
        """
        Apply a delta to an account whose lock the caller already holds.

        Logs the transition when this delta exhausts a tier.
        """
        now = self._clock() if now is None else now
        was_usable = account.check_usable(now)[0]
        account.record_usage(tokens_used, requests_used, now)
        usable, blocking = account.check_usable(now)
        if was_usable and not usable and blocking is not None:
            tier = account.quotas[blocking]
            lib_logger.info(
                f"Quota exhausted: account '{account.name}' ({account.id}) "
                f"{blocking.value} tier at {tier.tokens_used}/{tier.token_limit} tokens, "
                f"{tier.requests_used}/{tier.request_limit or '-'} requests; "
                f"resets in {tier.seconds_until_reset(now)}s"
            )
        self.schedule_save()

    async def record(
        self, account_id: str, tokens_used: int, requests_used: int = 1
    ) -> bool:
        """
        Record consumption of a dispatched call.

        Args:
            account_id: Account that served the call
            tokens_used: Tokens consumed
            requests_used: Requests consumed

        Returns:
            False if the account no longer exists (deleted while in flight)
        """
        account = await self._registry.get_account(account_id)
        if account is None:
            lib_logger.warning(
                f"Dropping usage for unknown account {account_id} "
                f"({tokens_used} tokens, {requests_used} requests)"
            )
            return False
        async with self.lock_for(account_id):
            self.apply_locked(account, tokens_used, requests_used)
        return True

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    def schedule_save(self) -> None:
        if self._storage is None:
            return
        self._storage.mark_dirty()
        if self._save_task is None or self._save_task.done():
            try:
                self._save_task = asyncio.get_running_loop().create_task(
                    self._flush_after_debounce()
                )
            except RuntimeError:
                # No running loop; the next flush() or shutdown() persists it
                self._save_task = None

    async def _flush_after_debounce(self) -> None:
        await asyncio.sleep(self._save_debounce)
        await self.flush()

    async def flush(self, force: bool = False) -> bool:
        """Write dirty counters now."""
        if self._storage is None:
            return False
        if not self._storage.dirty and not force:
            return False
        version = self._storage.version
        try:
            accounts = await self._registry.list_all_accounts()
        except Exception as e:
            lib_logger.error(f"Cannot snapshot accounts for persistence: {e}")
            return False
        return await self._storage.save(
            build_snapshot(accounts), version=version, force=force
        )

    async def shutdown(self) -> None:
        if self._save_task and not self._save_task.done():
            self._save_task.cancel()
            try:
                await self._save_task
            except asyncio.CancelledError:
                pass
        self._save_task = None
        await self.flush()
