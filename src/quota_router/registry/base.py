# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Account registry: the store of provider and account definitions.

The routing engine reads accounts from the registry and mutates only their
quota counters; everything else is operator-driven.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

from ..core.errors import AccountNotFoundError
from ..core.types import ProviderDefinition
from ..quota.account import AccountUpdate, ProviderAccount
from .catalog import BUILTIN_PROVIDERS

lib_logger = logging.getLogger("quota_router")


class AccountRegistry(ABC):
    """
    Interface the router uses to read account definitions.

    list_accounts() must return a stable snapshot of account membership for
    the provider: one call never mixes accounts from before and after a
    concurrent add or delete.

    The registry has no write-back for quota counters. get_account(),
    list_accounts() and list_all_accounts() must return the live
    ProviderAccount objects the registry keeps, because the router records
    consumption and rolls windows by mutating them in place. A registry
    backed by an external store must cache live objects and persist them
    itself; returning fresh copies would silently drop recorded usage.
    """

    @abstractmethod
    async def get_provider(self, provider_id: str) -> Optional[ProviderDefinition]:
        ...

    @abstractmethod
    async def list_providers(self) -> List[ProviderDefinition]:
        ...

    @abstractmethod
    async def list_accounts(self, provider_id: str) -> List[ProviderAccount]:
        """All accounts of a provider, enabled or not."""

    @abstractmethod
    async def list_all_accounts(self) -> List[ProviderAccount]:
        ...

    @abstractmethod
    async def get_account(self, account_id: str) -> Optional[ProviderAccount]:
        ...

    @abstractmethod
    async def add_account(self, account: ProviderAccount) -> ProviderAccount:
        ...

    @abstractmethod
    async def update_account(
        self, account_id: str, update: AccountUpdate
    ) -> ProviderAccount:
        ...

    @abstractmethod
    async def delete_account(self, account_id: str) -> bool:
        ...

    @abstractmethod
    async def set_default(self, provider_id: str, account_id: str) -> bool:
        ...


class InMemoryAccountRegistry(AccountRegistry):
    """
    Registry holding accounts in process memory.

    The account objects handed out are the live ones, so counters recorded
    by the router are what the next selection reads.
    """

    def __init__(
        self,
        accounts: Optional[Iterable[ProviderAccount]] = None,
        providers: Optional[Dict[str, ProviderDefinition]] = None,
    ):
        self._providers: Dict[str, ProviderDefinition] = dict(
            providers if providers is not None else BUILTIN_PROVIDERS
        )
        self._accounts: Dict[str, ProviderAccount] = {}
        self._lock = asyncio.Lock()
        for account in accounts or []:
            self._insert(account)

    def _insert(self, account: ProviderAccount) -> ProviderAccount:
        is_first = not any(
            a.provider_id == account.provider_id for a in self._accounts.values()
        )
        if is_first:
            account.is_default = True
        elif account.is_default:
            for other in self._accounts.values():
                if other.provider_id == account.provider_id:
                    other.is_default = False
        self._accounts[account.id] = account
        return account

    async def get_provider(self, provider_id: str) -> Optional[ProviderDefinition]:
        return self._providers.get(provider_id)

    async def list_providers(self) -> List[ProviderDefinition]:
        return list(self._providers.values())

    def register_provider(self, provider: ProviderDefinition) -> None:
        self._providers[provider.id] = provider

    async def list_accounts(self, provider_id: str) -> List[ProviderAccount]:
        async with self._lock:
            return [a for a in self._accounts.values() if a.provider_id == provider_id]

    async def list_all_accounts(self) -> List[ProviderAccount]:
        async with self._lock:
            return list(self._accounts.values())

    async def get_account(self, account_id: str) -> Optional[ProviderAccount]:
        return self._accounts.get(account_id)

    async def add_account(self, account: ProviderAccount) -> ProviderAccount:
        async with self._lock:
            if account.id in self._accounts:
                raise ValueError(f"Account '{account.id}' already exists")
            if account.provider_id not in self._providers:
                lib_logger.warning(
                    f"Account '{account.name}' references unknown provider "
                    f"'{account.provider_id}'"
                )
            self._insert(account)
        lib_logger.info(
            f"Added account '{account.name}' ({account.id}) for {account.provider_id} "
            f"(priority: {account.priority}, default: {account.is_default})"
        )
        return account

    async def update_account(
        self, account_id: str, update: AccountUpdate
    ) -> ProviderAccount:
        async with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                raise AccountNotFoundError(account_id)
            account.apply_update(update)
        lib_logger.debug(f"Updated account {account_id}")
        return account

    async def delete_account(self, account_id: str) -> bool:
        async with self._lock:
            account = self._accounts.pop(account_id, None)
        if account is None:
            return False
        lib_logger.info(f"Deleted account '{account.name}' ({account_id})")
        return True

    async def set_default(self, provider_id: str, account_id: str) -> bool:
        async with self._lock:
            target = self._accounts.get(account_id)
            if target is None or target.provider_id != provider_id:
                return False
            for account in self._accounts.values():
                if account.provider_id == provider_id:
                    account.is_default = account.id == account_id
        return True
