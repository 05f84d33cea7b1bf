# SPDX-License-Identifier: MIT

import unittest

from quota_router.core.types import ApiKeyCredentials, Capability, QuotaPeriod
from quota_router.quota.account import AccountUpdate, ProviderAccount, QuotaUpdate
from quota_router.registry.catalog import make_model


def make_account(**overrides) -> ProviderAccount:
    fields = dict(
        id="acct-a",
        provider_id="openai",
        name="primary",
        credentials=ApiKeyCredentials(api_key="sk-test-primary"),
        models=[make_model("gpt-4o"), make_model("text-embedding-3-small")],
    )
    fields.update(overrides)
    return ProviderAccount(**fields)


class AccountUsabilityTest(unittest.TestCase):
    def test_account_without_tiers_is_usable(self) -> None:
        account = make_account()
        self.assertEqual(account.check_usable(1000.0), (True, None))
        self.assertIsNone(account.min_remaining_tokens(1000.0))

    def test_disabled_account_is_not_usable(self) -> None:
        account = make_account(enabled=False)
        self.assertEqual(account.check_usable(1000.0), (False, None))

    def test_first_exhausted_tier_in_period_order_blocks(self) -> None:
        account = make_account()
        account.set_quota(QuotaPeriod.DAY, 1000, now=1000.0)
        account.set_quota(QuotaPeriod.MINUTE, 1000, now=1000.0)
        account.set_quota(QuotaPeriod.HOUR, 1000, now=1000.0)
        account.quotas[QuotaPeriod.DAY].tokens_used = 1000
        account.quotas[QuotaPeriod.HOUR].tokens_used = 1000

        self.assertEqual(account.check_usable(1010.0), (False, QuotaPeriod.HOUR))
        self.assertEqual(account.blocking_tier(1010.0), QuotaPeriod.HOUR)

    def test_account_returns_when_blocking_window_rolls(self) -> None:
        account = make_account()
        account.set_quota(QuotaPeriod.MINUTE, 100, now=1000.0)
        account.set_quota(QuotaPeriod.DAY, 10_000, now=1000.0)
        account.record_usage(100, now=1010.0)

        self.assertFalse(account.is_usable(1030.0))
        self.assertTrue(account.is_usable(1060.0))
        self.assertEqual(account.quotas[QuotaPeriod.DAY].tokens_used, 100)

    def test_zero_limit_tier_always_blocks(self) -> None:
        account = make_account()
        account.set_quota(QuotaPeriod.MONTH, 0, now=1000.0)
        self.assertEqual(account.check_usable(1000.0), (False, QuotaPeriod.MONTH))

    def test_record_usage_hits_every_tier(self) -> None:
        account = make_account()
        account.set_quota(QuotaPeriod.MINUTE, 1000, now=1000.0)
        account.set_quota(QuotaPeriod.HOUR, 5000, now=1000.0)
        account.record_usage(120, now=1001.0)
        for tier in account.ordered_tiers():
            self.assertEqual(tier.tokens_used, 120)
            self.assertEqual(tier.requests_used, 1)
        self.assertEqual(account.min_remaining_tokens(1001.0), 880)


class AccountCapabilityTest(unittest.TestCase):
    def test_capability_matches_model_entry(self) -> None:
        account = make_account()
        self.assertTrue(account.supports_capability(Capability.LLM, "gpt-4o"))
        self.assertFalse(account.supports_capability(Capability.EMBEDDING, "gpt-4o"))
        self.assertTrue(
            account.supports_capability("embedding", "text-embedding-3-small")
        )
        self.assertFalse(account.supports_capability(Capability.LLM, "unknown-model"))


class AccountConfigurationTest(unittest.TestCase):
    def test_set_quota_keeps_existing_counters(self) -> None:
        account = make_account()
        account.set_quota(QuotaPeriod.MINUTE, 100, now=1000.0)
        account.record_usage(100, now=1001.0)

        account.set_quota(QuotaPeriod.MINUTE, 50, now=1002.0)
        tier = account.quotas[QuotaPeriod.MINUTE]
        self.assertEqual(tier.tokens_used, 100)
        self.assertEqual(tier.window_start, 1000.0)
        self.assertFalse(account.is_usable(1002.0))

    def test_apply_update(self) -> None:
        account = make_account()
        account.set_quota(QuotaPeriod.MINUTE, 100, now=1000.0)
        account.apply_update(
            AccountUpdate(
                name="renamed",
                priority=5,
                quotas=[QuotaUpdate(QuotaPeriod.DAY, 9000, 100)],
                remove_quotas=[QuotaPeriod.MINUTE],
            )
        )
        self.assertEqual(account.name, "renamed")
        self.assertEqual(account.priority, 5)
        self.assertEqual(list(account.quotas), [QuotaPeriod.DAY])
        self.assertEqual(account.quotas[QuotaPeriod.DAY].request_limit, 100)


class AccountStatusTest(unittest.TestCase):
    def test_status_reports_blocking_tier_and_next_reset(self) -> None:
        account = make_account()
        account.set_quota(QuotaPeriod.MINUTE, 100, now=1000.0)
        account.set_quota(QuotaPeriod.DAY, 100_000, now=1000.0)
        account.record_usage(100, now=1001.0)

        status = account.status(1020.0)
        self.assertFalse(status.usable)
        self.assertEqual(status.status, "exhausted")
        self.assertEqual(status.blocking_tier, QuotaPeriod.MINUTE)
        self.assertEqual(status.next_reset, {"period": "minute", "seconds": 40})

        payload = status.to_dict()
        self.assertEqual(payload["blocking_tier"], "minute")
        self.assertEqual(len(payload["quota_tiers"]), 2)

    def test_disabled_status(self) -> None:
        account = make_account(enabled=False)
        self.assertEqual(account.status(1000.0).status, "disabled")

    def test_next_reset_ignores_tiers_with_headroom(self) -> None:
        account = make_account()
        account.set_quota(QuotaPeriod.MINUTE, 100, now=1000.0)
        account.record_usage(10, now=1001.0)
        self.assertIsNone(account.next_reset(1002.0))


if __name__ == "__main__":
    unittest.main()
