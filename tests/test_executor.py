# SPDX-License-Identifier: MIT

import asyncio
import time
import unittest
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

from quota_router import (
    AccountRouter,
    ApiKeyCredentials,
    AwsCredentials,
    AzureCredentials,
    InMemoryAccountRegistry,
    ProviderAccount,
    QuotaPeriod,
)
from quota_router.client.executor import (
    RequestExecutor,
    classify_error,
    credential_kwargs,
    litellm_model_name,
)
from quota_router.core.errors import SelectionTimeoutError
from quota_router.core.types import ErrorAction
from quota_router.registry.catalog import make_model


class UpstreamError(Exception):
    def __init__(self, status_code: int):
        super().__init__(f"upstream returned {status_code}")
        self.status_code = status_code


def make_response(prompt_tokens=10, completion_tokens=5):
    return SimpleNamespace(
        usage=SimpleNamespace(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        )
    )


def make_account(account_id, priority=0, credentials=None, provider_id="openai"):
    account = ProviderAccount(
        id=account_id,
        provider_id=provider_id,
        name=f"account {account_id}",
        credentials=credentials or ApiKeyCredentials(api_key=f"sk-test-{account_id}"),
        priority=priority,
        models=[make_model("gpt-4o"), make_model("text-embedding-3-small")],
    )
    account.set_quota(QuotaPeriod.MINUTE, 10_000)
    return account


def make_executor(accounts):
    router = AccountRouter(
        InMemoryAccountRegistry(accounts), usage_file="", sweep_interval=0
    )
    return RequestExecutor(router, request_timeout=30)


class SlowRegistry(InMemoryAccountRegistry):
    async def list_accounts(self, provider_id):
        await asyncio.sleep(1.0)
        return await super().list_accounts(provider_id)


MESSAGES = [{"role": "user", "content": "hello"}]


class RequestExecutorTest(unittest.TestCase):
    def test_success_records_response_usage(self) -> None:
        a = make_account("a", priority=10)
        executor = make_executor([a, make_account("b")])
        mocked = AsyncMock(return_value=make_response(10, 5))

        with patch("litellm.acompletion", new=mocked):
            response = asyncio.run(executor.completion("openai", "gpt-4o", MESSAGES))

        self.assertEqual(response.usage.total_tokens, 15)
        kwargs = mocked.call_args.kwargs
        self.assertEqual(kwargs["model"], "openai/gpt-4o")
        self.assertEqual(kwargs["api_key"], "sk-test-a")
        self.assertEqual(kwargs["messages"], MESSAGES)
        tier = a.quotas[QuotaPeriod.MINUTE]
        self.assertEqual((tier.tokens_used, tier.requests_used), (15, 1))

    def test_rate_limit_rotates_to_next_account(self) -> None:
        a = make_account("a", priority=10)
        b = make_account("b")
        executor = make_executor([a, b])
        mocked = AsyncMock(side_effect=[UpstreamError(429), make_response(20, 10)])

        with patch("litellm.acompletion", new=mocked):
            asyncio.run(executor.completion("openai", "gpt-4o", MESSAGES))

        self.assertEqual(mocked.await_count, 2)
        self.assertEqual(mocked.call_args_list[1].kwargs["api_key"], "sk-test-b")
        a_tier = a.quotas[QuotaPeriod.MINUTE]
        b_tier = b.quotas[QuotaPeriod.MINUTE]
        self.assertEqual((a_tier.tokens_used, a_tier.requests_used), (0, 1))
        self.assertEqual((b_tier.tokens_used, b_tier.requests_used), (30, 1))

    def test_client_error_fails_without_rotation(self) -> None:
        a = make_account("a", priority=10)
        executor = make_executor([a, make_account("b")])
        mocked = AsyncMock(side_effect=UpstreamError(400))

        with patch("litellm.acompletion", new=mocked):
            with self.assertRaises(UpstreamError):
                asyncio.run(executor.completion("openai", "gpt-4o", MESSAGES))

        self.assertEqual(mocked.await_count, 1)
        self.assertEqual(a.quotas[QuotaPeriod.MINUTE].requests_used, 1)

    def test_last_error_raised_when_every_account_fails(self) -> None:
        accounts = [make_account("a", priority=10), make_account("b")]
        executor = make_executor(accounts)
        mocked = AsyncMock(side_effect=[UpstreamError(503), UpstreamError(429)])

        with patch("litellm.acompletion", new=mocked):
            with self.assertRaises(UpstreamError) as ctx:
                asyncio.run(executor.completion("openai", "gpt-4o", MESSAGES))

        self.assertEqual(ctx.exception.status_code, 429)
        self.assertEqual(mocked.await_count, 2)
        for account in accounts:
            self.assertEqual(account.quotas[QuotaPeriod.MINUTE].requests_used, 1)

    def test_slow_registry_fails_at_selection_timeout(self) -> None:
        router = AccountRouter(
            SlowRegistry([make_account("a")]),
            usage_file="",
            sweep_interval=0,
            selection_timeout=0.1,
        )
        executor = RequestExecutor(router, request_timeout=10)
        mocked = AsyncMock(return_value=make_response())

        with patch("litellm.acompletion", new=mocked):
            started = time.monotonic()
            with self.assertRaises(SelectionTimeoutError) as ctx:
                asyncio.run(executor.completion("openai", "gpt-4o", MESSAGES))
            elapsed = time.monotonic() - started

        self.assertLess(elapsed, 0.9)
        self.assertAlmostEqual(ctx.exception.timeout, 0.1, places=2)
        mocked.assert_not_awaited()

    def test_embedding_uses_aembedding(self) -> None:
        executor = make_executor([make_account("a")])
        mocked = AsyncMock(return_value=make_response(8, 0))

        with patch("litellm.aembedding", new=mocked):
            asyncio.run(
                executor.embedding("openai", "text-embedding-3-small", ["some text"])
            )

        kwargs = mocked.call_args.kwargs
        self.assertEqual(kwargs["model"], "openai/text-embedding-3-small")
        self.assertEqual(kwargs["input"], ["some text"])


class CredentialMappingTest(unittest.TestCase):
    def lease_for(self, account):
        return SimpleNamespace(account=account, credentials=account.credentials)

    def test_api_key_credentials(self) -> None:
        account = make_account(
            "a",
            credentials=ApiKeyCredentials(
                api_key="sk-x",
                organization_id="org-1",
                custom_endpoint="https://proxy.local/v1",
            ),
        )
        self.assertEqual(
            credential_kwargs(self.lease_for(account)),
            {
                "api_key": "sk-x",
                "organization": "org-1",
                "api_base": "https://proxy.local/v1",
            },
        )

    def test_azure_credentials(self) -> None:
        account = make_account(
            "az",
            provider_id="azure",
            credentials=AzureCredentials(
                endpoint="https://east.openai.azure.com",
                deployment_name="gpt4o-east",
                api_version="2024-06-01",
                api_key="az-key",
            ),
        )
        lease = self.lease_for(account)
        self.assertEqual(
            credential_kwargs(lease),
            {
                "api_key": "az-key",
                "api_base": "https://east.openai.azure.com",
                "api_version": "2024-06-01",
            },
        )
        self.assertEqual(litellm_model_name("azure", "gpt-4o", lease), "azure/gpt4o-east")

    def test_aws_credentials(self) -> None:
        account = make_account(
            "aws",
            provider_id="bedrock",
            credentials=AwsCredentials(
                region="us-east-1", access_key_id="AKIA", secret_access_key="secret"
            ),
        )
        lease = self.lease_for(account)
        self.assertEqual(credential_kwargs(lease)["aws_region_name"], "us-east-1")
        self.assertEqual(
            litellm_model_name("bedrock", "anthropic.claude-3-sonnet", lease),
            "bedrock/anthropic.claude-3-sonnet",
        )

    def test_provider_route_prefix(self) -> None:
        lease = self.lease_for(make_account("t", provider_id="together"))
        self.assertEqual(
            litellm_model_name("together", "llama", lease), "together_ai/llama"
        )


class ErrorClassificationTest(unittest.TestCase):
    def test_classification(self) -> None:
        self.assertEqual(classify_error(UpstreamError(429)), ErrorAction.ROTATE)
        self.assertEqual(classify_error(UpstreamError(503)), ErrorAction.ROTATE)
        self.assertEqual(classify_error(asyncio.TimeoutError()), ErrorAction.ROTATE)
        self.assertEqual(classify_error(UpstreamError(401)), ErrorAction.FAIL)
        self.assertEqual(classify_error(ValueError("bad")), ErrorAction.FAIL)


if __name__ == "__main__":
    unittest.main()
