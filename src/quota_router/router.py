# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
AccountRouter facade and AccountLease.

This is the main public API of the routing engine.
"""

import asyncio
import logging
import os
import time
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Literal, Optional, Union

from .core.constants import (
    DEFAULT_SAVE_DEBOUNCE,
    DEFAULT_SELECTION_TIMEOUT,
    DEFAULT_SWEEP_INTERVAL,
    ENV_SAVE_DEBOUNCE,
    ENV_SELECTION_TIMEOUT,
    ENV_SWEEP_INTERVAL,
    ENV_USAGE_FILE,
    env_float,
    env_int,
)
from .core.errors import AccountNotFoundError, SelectionTimeoutError
from .core.types import (
    AccountCredentials,
    AccountStatus,
    Capability,
    ProviderUsageSummary,
)
from .quota.account import AccountUpdate, ProviderAccount
from .registry.base import AccountRegistry, InMemoryAccountRegistry
from .scheduler import ResetScheduler
from .selection.engine import AccountSelector, selection_key
from .usage.recorder import ConsumptionRecorder
from .usage.storage import UsageStorage, apply_snapshot

lib_logger = logging.getLogger("quota_router")


class AccountLease:
    """
    Context manager for one routed call.

    Handles:
    - Recording actual usage on exit
    - Counting the request even when the call failed
    - Topping up a pre-call reservation (counters never decrease, so a
      reservation larger than the actual usage stays charged)

    Usage:
        async with await router.acquire("openai", "llm", "gpt-4o") as lease:
            response = await make_request(lease.credentials)
            lease.mark_success(prompt_tokens=100, completion_tokens=50)
    """

    def __init__(
        self,
        router: "AccountRouter",
        account: ProviderAccount,
        model_id: str,
        reserved_tokens: Optional[int] = None,
    ):
        self._router = router
        self.account = account
        self.model_id = model_id
        self.reserved_tokens = reserved_tokens
        self._acquired_at = time.time()
        self._result: Optional[Literal["success", "failure"]] = None
        self._tokens = 0
        self._recorded = False

    @property
    def account_id(self) -> str:
        return self.account.id

    @property
    def credentials(self) -> AccountCredentials:
        return self.account.credentials

    async def __aenter__(self) -> "AccountLease":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.finish()
        return False  # Don't suppress exceptions

    def mark_success(
        self,
        prompt_tokens: int = 0,
        completion_tokens: int = 0,
        total_tokens: Optional[int] = None,
    ) -> None:
        """Mark the call successful with its actual token usage."""
        self._result = "success"
        if total_tokens is None:
            total_tokens = prompt_tokens + completion_tokens
        self._tokens = max(0, total_tokens)

    def mark_failure(self, tokens_used: int = 0) -> None:
        """Mark the call failed. Tokens billed by the provider may still be passed."""
        self._result = "failure"
        self._tokens = max(0, tokens_used)

    async def finish(self) -> None:
        """Record usage once. Called automatically on context exit."""
        if self._recorded:
            return
        self._recorded = True
        if self.reserved_tokens is None:
            tokens, requests = self._tokens, 1
        else:
            # Request and estimate were charged at admission
            tokens, requests = max(0, self._tokens - self.reserved_tokens), 0
        if tokens == 0 and requests == 0:
            return
        await self._router.record(self.account.id, tokens, requests)
        lib_logger.debug(
            f"Lease on '{self.account.name}' for {self.model_id} finished "
            f"({self._result or 'unmarked'}, {self._tokens} tokens, "
            f"{time.time() - self._acquired_at:.2f}s)"
        )


class AccountRouter:
    """
    Main facade for quota-aware account routing.

    This class provides the primary interface for:
    - Selecting the account that serves a call
    - Recording consumption after the call
    - Leasing an account with optional pre-call reservation
    - Observability snapshots for dashboards

    Example:
        router = AccountRouter(registry)
        await router.initialize()

        account_id = await router.select("openai", "llm", "gpt-4o")
        ...
        await router.record(account_id, tokens_used=150)
    """

    def __init__(
        self,
        registry: Optional[AccountRegistry] = None,
        usage_file: Optional[Union[str, Path]] = None,
        selection_timeout: Optional[float] = None,
        sweep_interval: Optional[int] = None,
        save_debounce: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize AccountRouter.

        Args:
            registry: Account registry, defaults to an empty in-memory one
            usage_file: Path for persisted counters (QUOTA_ROUTER_USAGE_FILE)
            selection_timeout: Registry lookup budget per selection
            sweep_interval: Eager window sweep interval, 0 disables it
            save_debounce: Delay before dirty counters are written
            clock: Time source, in epoch seconds
        """
        self._registry = registry or InMemoryAccountRegistry()
        self._clock = clock

        if selection_timeout is None:
            selection_timeout = env_float(ENV_SELECTION_TIMEOUT, DEFAULT_SELECTION_TIMEOUT)
        if sweep_interval is None:
            sweep_interval = env_int(ENV_SWEEP_INTERVAL, DEFAULT_SWEEP_INTERVAL)
        if save_debounce is None:
            save_debounce = env_float(ENV_SAVE_DEBOUNCE, DEFAULT_SAVE_DEBOUNCE)
        if usage_file is None:
            usage_file = env_usage_file()
        self._selection_timeout = selection_timeout

        self._storage = UsageStorage(usage_file) if usage_file else None
        self._selector = AccountSelector(self._registry, selection_timeout, clock)
        self._recorder = ConsumptionRecorder(
            self._registry, self._storage, clock, save_debounce
        )
        self._scheduler = ResetScheduler(
            self._registry, self._recorder, sweep_interval, clock
        )

        self._initialized = False
        self._lock = asyncio.Lock()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def initialize(self) -> None:
        """Restore persisted counters and start the window sweep."""
        async with self._lock:
            if self._initialized:
                return
            if self._storage:
                records = await self._storage.load()
                accounts = await self._registry.list_all_accounts()
                restored = apply_snapshot(accounts, records)
                if restored:
                    lib_logger.info(
                        f"Restored {restored} quota tier(s) from {self._storage.file_path}"
                    )
            self._scheduler.start()
            self._initialized = True

    async def shutdown(self) -> None:
        await self._scheduler.stop()
        await self._recorder.shutdown()

    # =========================================================================
    # ADMISSION
    # =========================================================================

    async def _admit(
        self,
        provider_id: str,
        capability: Capability,
        model_id: str,
        exclude: Optional[Iterable[str]] = None,
        timeout: Optional[float] = None,
        reserve_tokens: Optional[int] = None,
    ) -> ProviderAccount:
        """
        Select an account and confirm it under the account's lock.

        Between ranking and locking, a concurrent record may exhaust the
        account or an operator may delete or disable it; in that case the
        ranking is redone against current state.
        """
        capability = Capability(capability)
        timeout = self._selection_timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        exclude_ids = set(exclude or ())

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise SelectionTimeoutError(provider_id, timeout)
            account = await self._selector.select(
                provider_id, capability, model_id, exclude_ids, timeout=remaining
            )
            async with self._recorder.lock_for(account.id):
                current = await self._registry.get_account(account.id)
                now = self._clock()
                if (
                    current is not None
                    and current.supports_capability(capability, model_id)
                    and current.is_usable(now)
                ):
                    if reserve_tokens is not None:
                        self._recorder.apply_locked(current, reserve_tokens, 1, now)
                    return current
            lib_logger.debug(
                f"Account {account.id} changed before admission. Re-evaluating..."
            )

    async def select(
        self,
        provider_id: str,
        capability: Capability,
        model_id: str,
        exclude: Optional[Iterable[str]] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """
        Choose the account for a call.

        Returns:
            The account id

        Raises:
            ProviderNotConfiguredError, ModelNotSupportedError,
            NoUsableAccountError, RegistryUnavailableError
        """
        account = await self._admit(provider_id, capability, model_id, exclude, timeout)
        return account.id

    async def acquire(
        self,
        provider_id: str,
        capability: Capability,
        model_id: str,
        estimated_tokens: Optional[int] = None,
        exclude: Optional[Iterable[str]] = None,
        timeout: Optional[float] = None,
    ) -> AccountLease:
        """
        Lease an account for a call.

        With estimated_tokens, the request and the estimate are charged
        atomically with the admission check, closing the gap in which
        concurrent callers could all be admitted against the same remaining
        budget.

        Returns:
            AccountLease for use with async with
        """
        if estimated_tokens is not None and estimated_tokens < 0:
            raise ValueError("estimated_tokens must be non-negative")
        account = await self._admit(
            provider_id,
            capability,
            model_id,
            exclude,
            timeout,
            reserve_tokens=estimated_tokens,
        )
        return AccountLease(self, account, model_id, estimated_tokens)

    async def record(
        self, account_id: str, tokens_used: int, requests_used: int = 1
    ) -> bool:
        """Record consumption of a dispatched call against an account."""
        return await self._recorder.record(account_id, tokens_used, requests_used)

    # =========================================================================
    # OPERATOR PASSTHROUGHS
    # =========================================================================

    async def add_account(self, account: ProviderAccount) -> ProviderAccount:
        return await self._registry.add_account(account)

    async def update_account(
        self, account_id: str, update: AccountUpdate
    ) -> ProviderAccount:
        async with self._recorder.lock_for(account_id):
            account = await self._registry.update_account(account_id, update)
        if update.quotas or update.remove_quotas:
            self._recorder.schedule_save()
        return account

    async def delete_account(self, account_id: str) -> bool:
        async with self._recorder.lock_for(account_id):
            deleted = await self._registry.delete_account(account_id)
        if deleted:
            self._recorder.forget(account_id)
        return deleted

    async def set_default(self, provider_id: str, account_id: str) -> bool:
        return await self._registry.set_default(provider_id, account_id)

    # =========================================================================
    # OBSERVABILITY
    # =========================================================================

    async def get_account_status(self, account_id: str) -> AccountStatus:
        account = await self._registry.get_account(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        async with self._recorder.lock_for(account_id):
            return account.status(self._clock())

    async def get_provider_statuses(self, provider_id: str) -> List[AccountStatus]:
        """Status of every account of a provider, in selection order."""
        accounts = sorted(
            await self._registry.list_accounts(provider_id), key=selection_key
        )
        statuses = []
        for account in accounts:
            async with self._recorder.lock_for(account.id):
                statuses.append(account.status(self._clock()))
        return statuses

    async def get_usage_summary(self, provider_id: str) -> ProviderUsageSummary:
        statuses = await self.get_provider_statuses(provider_id)
        return summarize(provider_id, statuses)

    async def get_availability_stats(
        self, provider_id: str, capability: Capability, model_id: str
    ) -> Dict[str, Any]:
        return await self._selector.get_availability_stats(
            provider_id, capability, model_id
        )

    async def get_stats(self, provider_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Snapshot for status endpoints and the quota viewer.

        Args:
            provider_id: Optional provider to restrict the snapshot to

        Returns:
            {"generated_at": float, "providers": {provider_id: {"summary", "accounts"}}}
        """
        if provider_id:
            provider_ids = [provider_id]
        else:
            accounts = await self._registry.list_all_accounts()
            provider_ids = sorted({a.provider_id for a in accounts})

        providers: Dict[str, Any] = {}
        for pid in provider_ids:
            statuses = await self.get_provider_statuses(pid)
            summary = summarize(pid, statuses)
            providers[pid] = {
                "summary": {
                    "total_accounts": summary.total_accounts,
                    "active_accounts": summary.active_accounts,
                    "exhausted_accounts": summary.exhausted_accounts,
                    "disabled_accounts": summary.disabled_accounts,
                },
                "accounts": [status.to_dict() for status in statuses],
            }
        return {"generated_at": self._clock(), "providers": providers}

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def registry(self) -> AccountRegistry:
        return self._registry

    @property
    def selection_timeout(self) -> float:
        return self._selection_timeout

    @property
    def selector(self) -> AccountSelector:
        return self._selector

    @property
    def recorder(self) -> ConsumptionRecorder:
        return self._recorder

    @property
    def scheduler(self) -> ResetScheduler:
        return self._scheduler

    @property
    def storage(self) -> Optional[UsageStorage]:
        return self._storage

    @property
    def initialized(self) -> bool:
        return self._initialized


def summarize(provider_id: str, statuses: List[AccountStatus]) -> ProviderUsageSummary:
    return ProviderUsageSummary(
        provider_id=provider_id,
        total_accounts=len(statuses),
        active_accounts=sum(1 for s in statuses if s.status == "active"),
        exhausted_accounts=sum(1 for s in statuses if s.status == "exhausted"),
        disabled_accounts=sum(1 for s in statuses if s.status == "disabled"),
    )


def env_usage_file() -> Optional[str]:
    return os.environ.get(ENV_USAGE_FILE) or None
