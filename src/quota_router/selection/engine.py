# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Account selection.

Filters a provider's accounts by enablement and model capability, splits
them into usable and quota-blocked, and picks the highest priority usable
account. Ties on priority are broken by account id so the same snapshot
always yields the same account.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from ..core.constants import DEFAULT_SELECTION_TIMEOUT
from ..core.errors import (
    ModelNotSupportedError,
    NoUsableAccountError,
    ProviderNotConfiguredError,
    RegistryUnavailableError,
    RoutingError,
    SelectionTimeoutError,
)
from ..core.types import BlockedAccount, Capability
from ..quota.account import ProviderAccount
from ..registry.base import AccountRegistry

lib_logger = logging.getLogger("quota_router")


@dataclass
class CandidateSet:
    """Result of ranking one provider's accounts for a request."""

    total: int = 0
    capable: int = 0
    excluded: int = 0
    usable: List[ProviderAccount] = field(default_factory=list)
    blocked: List[BlockedAccount] = field(default_factory=list)

    @property
    def retry_after(self) -> Optional[int]:
        """
        Smallest wait until any blocking tier resets.

        Accounts blocked by a deny tier carry no reset time and are left out.
        """
        waits = [
            b.seconds_until_reset for b in self.blocked if b.seconds_until_reset is not None
        ]
        return min(waits) if waits else None


def selection_key(account: ProviderAccount):
    """Priority descending, then account id ascending."""
    return (-account.priority, account.id)


def rank_accounts(
    accounts: Iterable[ProviderAccount],
    capability: Capability,
    model_id: str,
    now: float,
    exclude: Optional[Set[str]] = None,
) -> CandidateSet:
    """
    Partition accounts into ordered usable candidates and blocked ones.

    Disabled accounts and accounts lacking the model/capability are dropped.
    Excluded accounts count as capable but are neither usable nor blocked.
    """
    exclude = exclude or set()
    result = CandidateSet()
    for account in accounts:
        result.total += 1
        if not account.enabled or not account.supports_capability(capability, model_id):
            continue
        result.capable += 1
        if account.id in exclude:
            result.excluded += 1
            continue
        usable, blocking = account.check_usable(now)
        if usable:
            result.usable.append(account)
        else:
            tier = account.quotas.get(blocking) if blocking else None
            resets = tier is not None and not tier.is_denied
            result.blocked.append(
                BlockedAccount(
                    account_id=account.id,
                    name=account.name,
                    priority=account.priority,
                    blocking_tier=blocking,
                    seconds_until_reset=tier.seconds_until_reset(now) if resets else None,
                )
            )
    result.usable.sort(key=selection_key)
    return result


class AccountSelector:
    """
    Picks the account that should serve a call.

    Selection only reads tier state; the caller re-checks the chosen
    account under its lock before dispatching.
    """

    def __init__(
        self,
        registry: AccountRegistry,
        timeout: float = DEFAULT_SELECTION_TIMEOUT,
        clock: Callable[[], float] = time.time,
    ):
        self._registry = registry
        self._timeout = timeout
        self._clock = clock

    async def fetch_accounts(
        self, provider_id: str, timeout: Optional[float] = None
    ) -> List[ProviderAccount]:
        """
        Read the provider's accounts, failing fast when the registry is slow.

        Raises:
            SelectionTimeoutError: registry did not answer within the timeout
            RegistryUnavailableError: registry raised
        """
        timeout = self._timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(
                self._registry.list_accounts(provider_id), timeout=timeout
            )
        except asyncio.TimeoutError as e:
            lib_logger.warning(
                f"Registry lookup for {provider_id} exceeded {timeout:.2f}s. Failing fast."
            )
            raise SelectionTimeoutError(provider_id, timeout) from e
        except RoutingError:
            raise
        except Exception as e:
            raise RegistryUnavailableError(
                f"Account registry unavailable for '{provider_id}': {e}", provider_id
            ) from e

    async def rank(
        self,
        provider_id: str,
        capability: Capability,
        model_id: str,
        exclude: Optional[Set[str]] = None,
        timeout: Optional[float] = None,
    ) -> CandidateSet:
        accounts = await self.fetch_accounts(provider_id, timeout)
        if not accounts:
            raise ProviderNotConfiguredError(provider_id)
        capability = Capability(capability)
        return rank_accounts(accounts, capability, model_id, self._clock(), exclude)

    async def select(
        self,
        provider_id: str,
        capability: Capability,
        model_id: str,
        exclude: Optional[Set[str]] = None,
        timeout: Optional[float] = None,
    ) -> ProviderAccount:
        """
        Select the account to use for a call.

        Args:
            provider_id: Provider to route to
            capability: Capability the call needs (llm, embedding, ...)
            model_id: Model the call targets
            exclude: Account ids to skip (already tried)
            timeout: Registry lookup budget, defaults to the selector timeout

        Returns:
            The chosen ProviderAccount

        Raises:
            ProviderNotConfiguredError: provider has no accounts
            ModelNotSupportedError: no enabled account exposes the model
            NoUsableAccountError: every capable account is blocked or excluded
            RegistryUnavailableError: registry failed or timed out
        """
        candidates = await self.rank(provider_id, capability, model_id, exclude, timeout)
        if candidates.capable == 0:
            raise ModelNotSupportedError(provider_id, model_id, Capability(capability).value)
        if not candidates.usable:
            raise NoUsableAccountError(
                provider_id,
                model_id,
                candidates.blocked,
                candidates.retry_after,
                excluded=candidates.excluded,
            )
        chosen = candidates.usable[0]
        lib_logger.debug(
            f"Selected account '{chosen.name}' ({chosen.id}) for {provider_id}/{model_id} "
            f"(priority: {chosen.priority}, usable: {len(candidates.usable)}, "
            f"blocked: {len(candidates.blocked)})"
        )
        return chosen

    async def get_availability_stats(
        self,
        provider_id: str,
        capability: Capability,
        model_id: str,
    ) -> Dict[str, Any]:
        """Counts of usable and blocked accounts, grouped by blocking tier."""
        candidates = await self.rank(provider_id, capability, model_id)
        blocked_by: Dict[str, int] = {}
        for blocked in candidates.blocked:
            key = blocked.blocking_tier.value if blocked.blocking_tier else "disabled"
            blocked_by[key] = blocked_by.get(key, 0) + 1
        return {
            "provider": provider_id,
            "model": model_id,
            "total": candidates.total,
            "capable": candidates.capable,
            "available": len(candidates.usable),
            "blocked_by": blocked_by,
            "retry_after": candidates.retry_after,
        }
