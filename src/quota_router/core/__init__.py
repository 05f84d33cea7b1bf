# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from .errors import (
    AccountNotFoundError,
    ModelNotSupportedError,
    NoUsableAccountError,
    ProviderNotConfiguredError,
    RegistryUnavailableError,
    RoutingError,
    SelectionTimeoutError,
    mask_credential,
)
from .types import (
    AccountStatus,
    ApiKeyCredentials,
    AwsCredentials,
    AzureCredentials,
    BlockedAccount,
    Capability,
    CredentialShape,
    ModelInfo,
    ProviderDefinition,
    ProviderType,
    ProviderUsageSummary,
    QuotaPeriod,
    QuotaTierStatus,
    RecoveryHint,
)

__all__ = [
    "AccountNotFoundError",
    "ModelNotSupportedError",
    "NoUsableAccountError",
    "ProviderNotConfiguredError",
    "RegistryUnavailableError",
    "RoutingError",
    "SelectionTimeoutError",
    "mask_credential",
    "AccountStatus",
    "ApiKeyCredentials",
    "AwsCredentials",
    "AzureCredentials",
    "BlockedAccount",
    "Capability",
    "CredentialShape",
    "ModelInfo",
    "ProviderDefinition",
    "ProviderType",
    "ProviderUsageSummary",
    "QuotaPeriod",
    "QuotaTierStatus",
    "RecoveryHint",
]
