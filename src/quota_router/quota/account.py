# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Provider account state.

A ProviderAccount owns its quota tiers and model catalog. Usability and the
blocking tier are recomputed from the tiers on every call, so an account
returns to rotation as soon as the blocking window rolls over.
"""

import time
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from ..core.types import (
    AccountCredentials,
    AccountStatus,
    Capability,
    ModelInfo,
    QuotaPeriod,
)
from .tier import QuotaTier


@dataclass
class QuotaUpdate:
    """Operator change to one quota tier."""

    period: QuotaPeriod
    token_limit: Optional[int]
    request_limit: Optional[int] = None


@dataclass
class AccountUpdate:
    """Operator change to an account. None fields are left untouched."""

    name: Optional[str] = None
    enabled: Optional[bool] = None
    priority: Optional[int] = None
    models: Optional[List[ModelInfo]] = None
    quotas: Optional[List[QuotaUpdate]] = None
    remove_quotas: Optional[List[QuotaPeriod]] = None


@dataclass
class ProviderAccount:
    """A configured account of a provider, with multiple quota tiers."""

    provider_id: str
    name: str
    credentials: AccountCredentials
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    enabled: bool = True
    is_default: bool = False
    priority: int = 0  # Higher = preferred
    models: List[ModelInfo] = field(default_factory=list)
    quotas: Dict[QuotaPeriod, QuotaTier] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    # =========================================================================
    # QUOTA CONFIGURATION
    # =========================================================================

    def set_quota(
        self,
        period: QuotaPeriod,
        token_limit: Optional[int],
        request_limit: Optional[int] = None,
        now: Optional[float] = None,
    ) -> QuotaTier:
        """
        Add a tier, or change the limits of an existing one.

        Existing counters are kept so an edit never clears an exhaustion.
        """
        period = QuotaPeriod(period)
        tier = self.quotas.get(period)
        if tier is None:
            tier = QuotaTier(
                period=period,
                token_limit=token_limit,
                request_limit=request_limit,
                window_start=time.time() if now is None else now,
            )
            self.quotas[period] = tier
        else:
            tier.update_limits(token_limit, request_limit)
        self.updated_at = time.time()
        return tier

    def remove_quota(self, period: QuotaPeriod) -> bool:
        removed = self.quotas.pop(QuotaPeriod(period), None) is not None
        if removed:
            self.updated_at = time.time()
        return removed

    def ordered_tiers(self) -> List[QuotaTier]:
        """Configured tiers in the fixed check order."""
        return [self.quotas[p] for p in QuotaPeriod.ordered() if p in self.quotas]

    # =========================================================================
    # USABILITY
    # =========================================================================

    def roll_windows(self, now: Optional[float] = None) -> List[QuotaPeriod]:
        """Roll every elapsed tier. Returns the periods that reset."""
        now = time.time() if now is None else now
        return [tier.period for tier in self.ordered_tiers() if tier.maybe_roll_window(now)]

    def check_usable(
        self, now: Optional[float] = None
    ) -> Tuple[bool, Optional[QuotaPeriod]]:
        """
        Decide whether the account may serve a request right now.

        Returns:
            (usable, blocking_tier). blocking_tier is the first exhausted
            period in minute/hour/day/month order, or None.
        """
        if not self.enabled:
            return False, None
        now = time.time() if now is None else now
        for tier in self.ordered_tiers():
            tier.maybe_roll_window(now)
            if tier.is_exhausted():
                return False, tier.period
        return True, None

    def is_usable(self, now: Optional[float] = None) -> bool:
        return self.check_usable(now)[0]

    def blocking_tier(self, now: Optional[float] = None) -> Optional[QuotaPeriod]:
        """The exhausted tier keeping this account out of rotation, if any."""
        now = time.time() if now is None else now
        for tier in self.ordered_tiers():
            tier.maybe_roll_window(now)
            if tier.is_exhausted():
                return tier.period
        return None

    def supports_capability(self, capability: Capability, model_id: str) -> bool:
        capability = Capability(capability)
        return any(
            model.id == model_id and model.supports(capability) for model in self.models
        )

    def get_model(self, model_id: str) -> Optional[ModelInfo]:
        for model in self.models:
            if model.id == model_id:
                return model
        return None

    # =========================================================================
    # RECORDING
    # =========================================================================

    def record_usage(
        self, tokens: int, requests: int = 1, now: Optional[float] = None
    ) -> None:
        """Apply a usage delta to every tier of the account."""
        now = time.time() if now is None else now
        for tier in self.ordered_tiers():
            tier.record_usage(tokens, requests, now)

    # =========================================================================
    # VIEWS
    # =========================================================================

    def min_remaining_tokens(self, now: Optional[float] = None) -> Optional[int]:
        """The most restrictive remaining token budget, None without tiers."""
        tiers = self.ordered_tiers()
        if not tiers:
            return None
        self.roll_windows(now)
        return min(tier.remaining_tokens() for tier in tiers)

    def next_reset(self, now: Optional[float] = None) -> Optional[Tuple[QuotaPeriod, int]]:
        """The exhausted or nearly exhausted tier that resets soonest."""
        now = time.time() if now is None else now
        self.roll_windows(now)
        candidates = [
            (tier.period, tier.seconds_until_reset(now))
            for tier in self.ordered_tiers()
            if tier.near_limit
        ]
        if not candidates:
            return None
        return min(candidates, key=lambda item: item[1])

    def status(self, now: Optional[float] = None) -> AccountStatus:
        now = time.time() if now is None else now
        usable, blocking = self.check_usable(now)
        if self.enabled:
            blocking_view = blocking
        else:
            blocking_view = self.blocking_tier(now)
        reset = self.next_reset(now)
        return AccountStatus(
            id=self.id,
            provider_id=self.provider_id,
            name=self.name,
            enabled=self.enabled,
            is_default=self.is_default,
            priority=self.priority,
            usable=usable,
            blocking_tier=blocking_view,
            next_reset=(
                {"period": reset[0].value, "seconds": reset[1]} if reset else None
            ),
            quota_tiers=[tier.status(now) for tier in self.ordered_tiers()],
        )

    def apply_update(self, update: AccountUpdate) -> None:
        """Apply an operator update in place."""
        if update.name is not None:
            self.name = update.name
        if update.enabled is not None:
            self.enabled = update.enabled
        if update.priority is not None:
            self.priority = update.priority
        if update.models is not None:
            self.models = list(update.models)
        for quota in update.quotas or []:
            self.set_quota(quota.period, quota.token_limit, quota.request_limit)
        for period in update.remove_quotas or []:
            self.remove_quota(period)
        self.updated_at = time.time()
