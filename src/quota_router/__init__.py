# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

import logging
from typing import TYPE_CHECKING

from .core.errors import (
    AccountNotFoundError,
    ModelNotSupportedError,
    NoUsableAccountError,
    ProviderNotConfiguredError,
    RegistryUnavailableError,
    RoutingError,
    SelectionTimeoutError,
)
from .core.types import (
    ApiKeyCredentials,
    AwsCredentials,
    AzureCredentials,
    Capability,
    QuotaPeriod,
    RecoveryHint,
)
from .quota import AccountUpdate, ProviderAccount, QuotaTier, QuotaUpdate
from .registry import AccountRegistry, InMemoryAccountRegistry
from .router import AccountLease, AccountRouter

logging.getLogger("quota_router").addHandler(logging.NullHandler())

# litellm is only imported when the executor is first used
if TYPE_CHECKING:
    from .client import RequestExecutor

__all__ = [
    "AccountRouter",
    "AccountLease",
    "RequestExecutor",
    "AccountRegistry",
    "InMemoryAccountRegistry",
    "ProviderAccount",
    "AccountUpdate",
    "QuotaUpdate",
    "QuotaTier",
    "QuotaPeriod",
    "Capability",
    "RecoveryHint",
    "ApiKeyCredentials",
    "AzureCredentials",
    "AwsCredentials",
    "RoutingError",
    "ProviderNotConfiguredError",
    "ModelNotSupportedError",
    "NoUsableAccountError",
    "RegistryUnavailableError",
    "SelectionTimeoutError",
    "AccountNotFoundError",
]


def __getattr__(name):
    """Lazy-load RequestExecutor to keep litellm out of plain router imports."""
    if name == "RequestExecutor":
        from .client import RequestExecutor

        return RequestExecutor
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
