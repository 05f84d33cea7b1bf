# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Error taxonomy for account selection and recording.

Every selection failure is a RoutingError subclass carrying a RecoveryHint,
so callers can tell "try a different provider", "wait and retry" and
"fix configuration" apart without string matching.
"""

from typing import List, Optional

from .types import BlockedAccount, RecoveryHint


class RoutingError(Exception):
    """Base class for all routing errors."""

    hint: RecoveryHint = RecoveryHint.FIX_CONFIGURATION
    retryable: bool = False

    def __init__(self, message: str, provider_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.provider_id = provider_id


class ProviderNotConfiguredError(RoutingError):
    """No accounts exist for the provider. Not retryable without operator action."""

    hint = RecoveryHint.TRY_OTHER_PROVIDER

    def __init__(self, provider_id: str):
        super().__init__(f"No accounts configured for provider '{provider_id}'", provider_id)


class ModelNotSupportedError(RoutingError):
    """No enabled account exposes the requested model with the requested capability."""

    hint = RecoveryHint.FIX_CONFIGURATION

    def __init__(self, provider_id: str, model_id: str, capability: str):
        super().__init__(
            f"No enabled account of '{provider_id}' exposes model '{model_id}' "
            f"with capability '{capability}'",
            provider_id,
        )
        self.model_id = model_id
        self.capability = capability


class NoUsableAccountError(RoutingError):
    """
    Every configured, capable account is quota-blocked or was excluded.

    retry_after is the smallest seconds-until-reset across the blocking
    tiers, or None when no blocked account has a tier that will reset.
    When every candidate is blocked by a zero or missing token limit and
    none was excluded, waiting cannot help: the error then asks for a
    configuration fix and is not retryable.
    """

    hint = RecoveryHint.RETRY_LATER
    retryable = True

    def __init__(
        self,
        provider_id: str,
        model_id: str,
        blocked: List[BlockedAccount],
        retry_after: Optional[int],
        excluded: int = 0,
    ):
        target = f"account(s) of '{provider_id}' for model '{model_id}'"
        if blocked:
            message = f"All {len(blocked)} {target} are quota-blocked"
            if excluded:
                message += f" and {excluded} more were excluded"
        else:
            message = f"All {excluded} capable {target} were excluded"
        if retry_after is not None:
            message += f", retry after {retry_after}s"
        elif blocked and not excluded:
            message += " by tiers without a token limit"
        super().__init__(message, provider_id)
        self.model_id = model_id
        self.blocked = blocked
        self.retry_after = retry_after
        self.excluded = excluded
        if blocked and retry_after is None and not excluded:
            self.hint = RecoveryHint.FIX_CONFIGURATION
            self.retryable = False


class RegistryUnavailableError(RoutingError):
    """Reading account definitions failed. Retry with backoff."""

    hint = RecoveryHint.RETRY_LATER
    retryable = True


class SelectionTimeoutError(RegistryUnavailableError):
    """The registry did not answer before the selection deadline."""

    def __init__(self, provider_id: str, timeout: float):
        super().__init__(
            f"Account registry lookup for '{provider_id}' exceeded {timeout:.2f}s",
            provider_id,
        )
        self.timeout = timeout


class AccountNotFoundError(RoutingError):
    """An operator or recording path referenced an account that does not exist."""

    def __init__(self, account_id: str):
        super().__init__(f"Account '{account_id}' not found")
        self.account_id = account_id


def mask_credential(credential: Optional[str], style: str = "short") -> str:
    """
    Mask a credential for logging.

    Args:
        credential: API key or other secret
        style: "short" keeps the last 4 characters, "full" keeps 4 on each side

    Returns:
        Masked string safe to log
    """
    if not credential:
        return "<none>"
    if len(credential) <= 8:
        return "****"
    if style == "full":
        return f"{credential[:4]}...{credential[-4:]}"
    return f"...{credential[-4:]}"
