# SPDX-License-Identifier: MIT

import asyncio
import unittest

from quota_router.core.errors import (
    ModelNotSupportedError,
    NoUsableAccountError,
    ProviderNotConfiguredError,
    RegistryUnavailableError,
    SelectionTimeoutError,
)
from quota_router.core.types import ApiKeyCredentials, Capability, QuotaPeriod, RecoveryHint
from quota_router.quota.account import ProviderAccount
from quota_router.registry.base import InMemoryAccountRegistry
from quota_router.registry.catalog import make_model
from quota_router.selection.engine import AccountSelector

NOW = 1030.0


def make_account(account_id, priority=0, enabled=True, models=None) -> ProviderAccount:
    return ProviderAccount(
        id=account_id,
        provider_id="openai",
        name=f"account {account_id}",
        credentials=ApiKeyCredentials(api_key=f"sk-test-{account_id}"),
        enabled=enabled,
        priority=priority,
        models=models if models is not None else [make_model("gpt-4o")],
    )


def exhaust(account: ProviderAccount, period: QuotaPeriod) -> None:
    tier = account.set_quota(period, 100, now=1000.0)
    tier.tokens_used = 100


def select(registry, model_id="gpt-4o", capability=Capability.LLM, **kwargs):
    selector = AccountSelector(registry, timeout=1.0, clock=lambda: NOW)
    return asyncio.run(selector.select("openai", capability, model_id, **kwargs))


class FailingRegistry(InMemoryAccountRegistry):
    async def list_accounts(self, provider_id):
        raise RuntimeError("database offline")


class SlowRegistry(InMemoryAccountRegistry):
    async def list_accounts(self, provider_id):
        await asyncio.sleep(1.0)
        return await super().list_accounts(provider_id)


class AccountSelectionTest(unittest.TestCase):
    def test_highest_priority_usable_account_wins(self) -> None:
        registry = InMemoryAccountRegistry(
            [make_account("a", priority=1), make_account("b", priority=10)]
        )
        self.assertEqual(select(registry).id, "b")

    def test_priority_ties_break_on_account_id(self) -> None:
        registry = InMemoryAccountRegistry(
            [make_account("zeta", priority=5), make_account("alpha", priority=5)]
        )
        for _ in range(3):
            self.assertEqual(select(registry).id, "alpha")

    def test_exhausted_account_is_skipped(self) -> None:
        a = make_account("a", priority=10)
        exhaust(a, QuotaPeriod.MINUTE)
        registry = InMemoryAccountRegistry([a, make_account("b", priority=1)])
        self.assertEqual(select(registry).id, "b")

    def test_disabled_account_is_skipped(self) -> None:
        registry = InMemoryAccountRegistry(
            [make_account("a", priority=10, enabled=False), make_account("b")]
        )
        self.assertEqual(select(registry).id, "b")

    def test_excluded_account_is_skipped(self) -> None:
        registry = InMemoryAccountRegistry(
            [make_account("a", priority=10), make_account("b")]
        )
        self.assertEqual(select(registry, exclude={"a"}).id, "b")


class SelectionFailureTest(unittest.TestCase):
    def test_unknown_provider(self) -> None:
        with self.assertRaises(ProviderNotConfiguredError) as ctx:
            select(InMemoryAccountRegistry())
        self.assertEqual(ctx.exception.hint, RecoveryHint.TRY_OTHER_PROVIDER)
        self.assertFalse(ctx.exception.retryable)

    def test_model_not_exposed(self) -> None:
        registry = InMemoryAccountRegistry([make_account("a")])
        with self.assertRaises(ModelNotSupportedError) as ctx:
            select(registry, model_id="claude-3-opus")
        self.assertEqual(ctx.exception.hint, RecoveryHint.FIX_CONFIGURATION)

    def test_capability_mismatch(self) -> None:
        registry = InMemoryAccountRegistry([make_account("a")])
        with self.assertRaises(ModelNotSupportedError):
            select(registry, capability=Capability.EMBEDDING)

    def test_only_disabled_accounts_expose_model(self) -> None:
        registry = InMemoryAccountRegistry([make_account("a", enabled=False)])
        with self.assertRaises(ModelNotSupportedError):
            select(registry)

    def test_zero_limit_tier_denies(self) -> None:
        a = make_account("a")
        a.set_quota(QuotaPeriod.DAY, 0, now=1000.0)
        registry = InMemoryAccountRegistry([a])
        with self.assertRaises(NoUsableAccountError) as ctx:
            select(registry)
        self.assertEqual(ctx.exception.blocked[0].blocking_tier, QuotaPeriod.DAY)

    def test_all_blocked_reports_soonest_reset(self) -> None:
        a = make_account("a", priority=10)
        exhaust(a, QuotaPeriod.MINUTE)
        b = make_account("b")
        exhaust(b, QuotaPeriod.DAY)
        registry = InMemoryAccountRegistry([a, b])

        with self.assertRaises(NoUsableAccountError) as ctx:
            select(registry)
        error = ctx.exception
        self.assertEqual(error.retry_after, 30)
        self.assertEqual(error.hint, RecoveryHint.RETRY_LATER)
        self.assertTrue(error.retryable)
        self.assertEqual({blocked.account_id for blocked in error.blocked}, {"a", "b"})

    def test_zero_limit_only_asks_for_configuration(self) -> None:
        a = make_account("a")
        a.set_quota(QuotaPeriod.MINUTE, 0, now=1000.0)
        registry = InMemoryAccountRegistry([a])

        with self.assertRaises(NoUsableAccountError) as ctx:
            select(registry)
        error = ctx.exception
        self.assertIsNone(error.retry_after)
        self.assertIsNone(error.blocked[0].seconds_until_reset)
        self.assertEqual(error.hint, RecoveryHint.FIX_CONFIGURATION)
        self.assertFalse(error.retryable)

    def test_zero_limit_ignored_for_retry_after(self) -> None:
        a = make_account("a", priority=10)
        a.set_quota(QuotaPeriod.MINUTE, 0, now=1000.0)
        b = make_account("b")
        exhaust(b, QuotaPeriod.HOUR)
        registry = InMemoryAccountRegistry([a, b])

        with self.assertRaises(NoUsableAccountError) as ctx:
            select(registry)
        self.assertEqual(ctx.exception.retry_after, 3600 - 30)
        self.assertTrue(ctx.exception.retryable)

    def test_every_account_excluded(self) -> None:
        registry = InMemoryAccountRegistry([make_account("a"), make_account("b")])
        with self.assertRaises(NoUsableAccountError) as ctx:
            select(registry, exclude={"a", "b"})
        error = ctx.exception
        self.assertEqual(error.blocked, [])
        self.assertEqual(error.excluded, 2)
        self.assertIn("All 2 capable account(s)", str(error))
        self.assertIn("were excluded", str(error))
        self.assertNotIn("quota-blocked", str(error))
        self.assertTrue(error.retryable)

    def test_registry_failure_is_retryable(self) -> None:
        registry = FailingRegistry([make_account("a")])
        with self.assertRaises(RegistryUnavailableError) as ctx:
            select(registry)
        self.assertTrue(ctx.exception.retryable)

    def test_slow_registry_times_out(self) -> None:
        registry = SlowRegistry([make_account("a")])
        selector = AccountSelector(registry, timeout=0.05, clock=lambda: NOW)
        with self.assertRaises(SelectionTimeoutError):
            asyncio.run(selector.select("openai", Capability.LLM, "gpt-4o"))


class AvailabilityStatsTest(unittest.TestCase):
    def test_counts_by_blocking_tier(self) -> None:
        a = make_account("a")
        exhaust(a, QuotaPeriod.MINUTE)
        b = make_account("b")
        exhaust(b, QuotaPeriod.HOUR)
        registry = InMemoryAccountRegistry(
            [a, b, make_account("c"), make_account("d", enabled=False)]
        )
        selector = AccountSelector(registry, clock=lambda: NOW)
        stats = asyncio.run(
            selector.get_availability_stats("openai", Capability.LLM, "gpt-4o")
        )
        self.assertEqual(stats["total"], 4)
        self.assertEqual(stats["capable"], 3)
        self.assertEqual(stats["available"], 1)
        self.assertEqual(stats["blocked_by"], {"minute": 1, "hour": 1})
        self.assertEqual(stats["retry_after"], 30)


if __name__ == "__main__":
    unittest.main()
