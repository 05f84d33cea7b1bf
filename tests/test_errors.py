# SPDX-License-Identifier: MIT

import unittest

from quota_router.core.errors import (
    AccountNotFoundError,
    NoUsableAccountError,
    RegistryUnavailableError,
    RoutingError,
    SelectionTimeoutError,
    mask_credential,
)
from quota_router.core.types import BlockedAccount, QuotaPeriod, RecoveryHint


class RoutingErrorTest(unittest.TestCase):
    def test_timeout_is_a_retryable_registry_failure(self) -> None:
        error = SelectionTimeoutError("openai", 0.5)
        self.assertIsInstance(error, RegistryUnavailableError)
        self.assertIsInstance(error, RoutingError)
        self.assertTrue(error.retryable)
        self.assertEqual(error.hint, RecoveryHint.RETRY_LATER)
        self.assertIn("0.50s", str(error))

    def test_no_usable_account_message(self) -> None:
        blocked = [BlockedAccount("a", "team-key", 0, QuotaPeriod.MINUTE, 12)]
        error = NoUsableAccountError("openai", "gpt-4o", blocked, retry_after=12)
        self.assertIn("All 1 account(s)", str(error))
        self.assertIn("retry after 12s", str(error))
        self.assertEqual(error.provider_id, "openai")
        self.assertTrue(error.retryable)

    def test_deny_only_blocking_is_a_configuration_problem(self) -> None:
        blocked = [BlockedAccount("a", "team-key", 0, QuotaPeriod.DAY, None)]
        error = NoUsableAccountError("openai", "gpt-4o", blocked, retry_after=None)
        self.assertFalse(error.retryable)
        self.assertEqual(error.hint, RecoveryHint.FIX_CONFIGURATION)
        self.assertIn("without a token limit", str(error))
        self.assertTrue(NoUsableAccountError.retryable)

    def test_account_not_found_needs_configuration(self) -> None:
        error = AccountNotFoundError("acct-1")
        self.assertFalse(error.retryable)
        self.assertEqual(error.hint, RecoveryHint.FIX_CONFIGURATION)


class MaskCredentialTest(unittest.TestCase):
    def test_masking(self) -> None:
        key = "sk-abcdefghijklmnopwxyz"
        self.assertEqual(mask_credential(key), "...wxyz")
        self.assertEqual(mask_credential(key, style="full"), "sk-a...wxyz")
        self.assertEqual(mask_credential("short"), "****")
        self.assertEqual(mask_credential(None), "<none>")


if __name__ == "__main__":
    unittest.main()
