# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Request execution with quota-aware account rotation.

The RequestExecutor leases an account from the AccountRouter, dispatches the
call through litellm with that account's credentials, records the actual
token usage, and moves on to the next account when the upstream reports a
rate limit, overload or connection failure.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Set

import httpx
import litellm
from litellm.exceptions import (
    APIConnectionError,
    InternalServerError,
    RateLimitError,
    ServiceUnavailableError,
)

from ..core.constants import DEFAULT_REQUEST_TIMEOUT, ENV_REQUEST_TIMEOUT, env_int
from ..core.errors import NoUsableAccountError, SelectionTimeoutError, mask_credential
from ..core.types import (
    ApiKeyCredentials,
    AwsCredentials,
    AzureCredentials,
    Capability,
    ErrorAction,
    RequestContext,
)
from ..router import AccountLease, AccountRouter

lib_logger = logging.getLogger("quota_router")

# Provider ids whose litellm route prefix differs from the id
LITELLM_PROVIDER_PREFIX: Dict[str, str] = {
    "together": "together_ai",
    "jina": "jina_ai",
}

ROTATE_STATUS_CODES = {429, 500, 502, 503, 504}

ROTATE_EXCEPTIONS = (
    RateLimitError,
    ServiceUnavailableError,
    APIConnectionError,
    InternalServerError,
    httpx.TimeoutException,
    httpx.ConnectError,
    asyncio.TimeoutError,
)


def classify_error(error: Exception) -> str:
    """Decide whether an upstream error warrants trying another account."""
    if isinstance(error, ROTATE_EXCEPTIONS):
        return ErrorAction.ROTATE
    status_code = getattr(error, "status_code", None)
    if status_code in ROTATE_STATUS_CODES:
        return ErrorAction.ROTATE
    return ErrorAction.FAIL


def litellm_model_name(provider_id: str, model_id: str, lease: AccountLease) -> str:
    """The "<route>/<model>" string litellm dispatches on."""
    credentials = lease.credentials
    if isinstance(credentials, AzureCredentials):
        return f"azure/{credentials.deployment_name}"
    prefix = LITELLM_PROVIDER_PREFIX.get(provider_id, provider_id)
    return f"{prefix}/{model_id}"


def credential_kwargs(lease: AccountLease) -> Dict[str, Any]:
    """Translate the leased account's credentials into litellm call kwargs."""
    credentials = lease.credentials
    if isinstance(credentials, ApiKeyCredentials):
        kwargs: Dict[str, Any] = {"api_key": credentials.api_key}
        if credentials.organization_id:
            kwargs["organization"] = credentials.organization_id
        if credentials.custom_endpoint:
            kwargs["api_base"] = credentials.custom_endpoint
        return kwargs
    if isinstance(credentials, AzureCredentials):
        return {
            "api_key": credentials.api_key,
            "api_base": credentials.endpoint,
            "api_version": credentials.api_version,
        }
    if isinstance(credentials, AwsCredentials):
        return {
            "aws_region_name": credentials.region,
            "aws_access_key_id": credentials.access_key_id,
            "aws_secret_access_key": credentials.secret_access_key,
        }
    raise TypeError(f"Unsupported credentials type: {type(credentials).__name__}")


def _credential_label(lease: AccountLease) -> str:
    credentials = lease.credentials
    secret = getattr(credentials, "api_key", None) or getattr(
        credentials, "access_key_id", None
    )
    return f"'{lease.account.name}' ({mask_credential(secret)})"


class RequestExecutor:
    """
    Executes completion and embedding calls with account rotation.

    This class handles:
    - Leasing the best usable account from the router
    - Credential injection for api-key, Azure and AWS accounts
    - Recording actual usage reported by the response
    - Rotating to the next account on rate limits and transient failures
    - An overall deadline across all attempts
    """

    def __init__(
        self,
        router: AccountRouter,
        request_timeout: Optional[float] = None,
        estimate_tokens: bool = False,
    ):
        """
        Args:
            router: Router that owns the accounts
            request_timeout: Budget for one request across rotations
                (QUOTA_ROUTER_REQUEST_TIMEOUT)
            estimate_tokens: Reserve a litellm.token_counter estimate of the
                prompt at admission
        """
        self._router = router
        if request_timeout is None:
            request_timeout = env_int(ENV_REQUEST_TIMEOUT, DEFAULT_REQUEST_TIMEOUT)
        self._request_timeout = request_timeout
        self._estimate_tokens = estimate_tokens

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def completion(
        self, provider_id: str, model_id: str, messages: List[Dict[str, Any]], **kwargs
    ) -> Any:
        context = self._build_context(
            provider_id, model_id, Capability.LLM, dict(kwargs, messages=messages)
        )
        return await self.execute(context)

    async def embedding(
        self, provider_id: str, model_id: str, input: Any, **kwargs
    ) -> Any:
        context = self._build_context(
            provider_id, model_id, Capability.EMBEDDING, dict(kwargs, input=input)
        )
        return await self.execute(context)

    async def execute(self, context: RequestContext) -> Any:
        """
        Execute a request, rotating across the provider's accounts.

        Args:
            context: RequestContext with all request details

        Returns:
            The litellm response object

        Raises:
            RoutingError: no account could be selected and nothing was tried
            Exception: the last upstream error once every account was tried
                or the deadline passed, or the first non-rotatable error
        """
        tried: Set[str] = set()
        last_exception: Optional[Exception] = None

        while time.time() < context.deadline:
            remaining = context.deadline - time.time()
            try:
                lease = await self._router.acquire(
                    context.provider_id,
                    context.capability,
                    context.model_id,
                    estimated_tokens=context.estimated_tokens,
                    exclude=tried,
                    timeout=min(remaining, self._router.selection_timeout),
                )
            except (NoUsableAccountError, SelectionTimeoutError):
                if last_exception is not None:
                    lib_logger.warning(
                        f"No untried account left for {context.provider_id}/"
                        f"{context.model_id} after {len(tried)} attempt(s)"
                    )
                    raise last_exception
                raise

            tried.add(lease.account_id)
            async with lease:
                try:
                    response = await self._dispatch(context, lease, remaining)
                except Exception as e:
                    last_exception = e
                    action = self._handle_error(e, lease, context)
                    if action == ErrorAction.ROTATE:
                        continue
                    raise

                prompt_tokens, completion_tokens, total_tokens = (
                    self._extract_usage_tokens(response)
                )
                lease.mark_success(prompt_tokens, completion_tokens, total_tokens)
                lib_logger.info(
                    f"Request to {context.provider_id}/{context.model_id} served by "
                    f"{_credential_label(lease)}: {total_tokens} tokens"
                )
                return response

        lib_logger.warning(
            f"Request deadline reached for {context.provider_id}/{context.model_id} "
            f"after {len(tried)} attempt(s)"
        )
        if last_exception is not None:
            raise last_exception
        raise SelectionTimeoutError(context.provider_id, self._request_timeout)

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _build_context(
        self,
        provider_id: str,
        model_id: str,
        capability: Capability,
        kwargs: Dict[str, Any],
    ) -> RequestContext:
        estimated = None
        if self._estimate_tokens:
            estimated = self._estimate_prompt_tokens(provider_id, model_id, kwargs)
        return RequestContext(
            provider_id=provider_id,
            model_id=model_id,
            capability=capability,
            kwargs=kwargs,
            deadline=time.time() + self._request_timeout,
            estimated_tokens=estimated,
        )

    def _estimate_prompt_tokens(
        self, provider_id: str, model_id: str, kwargs: Dict[str, Any]
    ) -> Optional[int]:
        try:
            if "messages" in kwargs:
                return litellm.token_counter(model=model_id, messages=kwargs["messages"])
            text = kwargs.get("input")
            if isinstance(text, list):
                text = " ".join(str(t) for t in text)
            return litellm.token_counter(model=model_id, text=str(text or ""))
        except Exception as e:
            lib_logger.debug(
                f"Token estimate unavailable for {provider_id}/{model_id}: {e}"
            )
            return None

    async def _dispatch(
        self, context: RequestContext, lease: AccountLease, remaining: float
    ) -> Any:
        kwargs = dict(context.kwargs)
        kwargs.update(credential_kwargs(lease))
        kwargs["model"] = litellm_model_name(
            context.provider_id, context.model_id, lease
        )
        kwargs.setdefault("timeout", remaining)

        lib_logger.info(
            f"Attempting call to {kwargs['model']} with {_credential_label(lease)}"
        )
        if context.capability == Capability.EMBEDDING:
            return await litellm.aembedding(**kwargs)
        return await litellm.acompletion(**kwargs)

    def _handle_error(
        self, error: Exception, lease: AccountLease, context: RequestContext
    ) -> str:
        """
        Mark the lease failed and decide what to do next.

        Returns:
            ErrorAction indicating what to do next
        """
        action = classify_error(error)
        lease.mark_failure()
        error_message = str(error)[:150]
        if action == ErrorAction.ROTATE:
            lib_logger.info(
                f"Rotating from {_credential_label(lease)} after "
                f"{type(error).__name__}: {error_message}"
            )
        else:
            lib_logger.error(
                f"Request to {context.provider_id}/{context.model_id} failed on "
                f"{_credential_label(lease)}: {type(error).__name__}: {error_message}"
            )
        return action

    def _extract_usage_tokens(self, response: Any) -> tuple:
        """(prompt, completion, total) tokens reported by the response."""
        prompt_tokens = 0
        completion_tokens = 0
        total_tokens = None

        usage = getattr(response, "usage", None)
        if isinstance(response, dict):
            usage = response.get("usage")
        if usage:
            if isinstance(usage, dict):
                prompt_tokens = usage.get("prompt_tokens", 0) or 0
                completion_tokens = usage.get("completion_tokens", 0) or 0
                total_tokens = usage.get("total_tokens")
            else:
                prompt_tokens = getattr(usage, "prompt_tokens", 0) or 0
                completion_tokens = getattr(usage, "completion_tokens", 0) or 0
                total_tokens = getattr(usage, "total_tokens", None)

        if not total_tokens:
            total_tokens = prompt_tokens + completion_tokens
        return prompt_tokens, completion_tokens, total_tokens
