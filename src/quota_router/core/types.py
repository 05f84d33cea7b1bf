# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Shared type definitions for the quota router.

This module contains the enums and dataclasses used across the quota,
registry, selection and client packages.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Union


# =============================================================================
# ENUMS
# =============================================================================


class QuotaPeriod(str, Enum):
    """Fixed quota window widths. Order of declaration is the check order."""

    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"
    MONTH = "month"

    @property
    def seconds(self) -> int:
        return PERIOD_SECONDS[self]

    @property
    def display_name(self) -> str:
        return f"per {self.value}"

    @classmethod
    def ordered(cls) -> List["QuotaPeriod"]:
        """Periods in the fixed evaluation order (minute, hour, day, month)."""
        return [cls.MINUTE, cls.HOUR, cls.DAY, cls.MONTH]


PERIOD_SECONDS: Dict[QuotaPeriod, int] = {
    QuotaPeriod.MINUTE: 60,
    QuotaPeriod.HOUR: 3600,
    QuotaPeriod.DAY: 86400,
    QuotaPeriod.MONTH: 30 * 86400,
}


class Capability(str, Enum):
    """What a model can be called for."""

    LLM = "llm"
    EMBEDDING = "embedding"
    TTS = "tts"
    STT = "stt"
    IMAGE_GENERATION = "image_generation"


class ProviderType(str, Enum):
    LLM = "llm"
    EMBEDDING = "embedding"
    BOTH = "both"


class CredentialShape(str, Enum):
    API_KEY = "api_key"
    AZURE = "azure"
    AWS = "aws"


class RecoveryHint(str, Enum):
    """How a caller should react to a failed selection."""

    TRY_OTHER_PROVIDER = "try_other_provider"
    RETRY_LATER = "retry_later"
    FIX_CONFIGURATION = "fix_configuration"


# =============================================================================
# CREDENTIAL TYPES
# =============================================================================


@dataclass
class ApiKeyCredentials:
    """Standard API key credentials."""

    api_key: str
    organization_id: Optional[str] = None
    custom_endpoint: Optional[str] = None
    shape: CredentialShape = field(default=CredentialShape.API_KEY, init=False)


@dataclass
class AzureCredentials:
    """Azure OpenAI deployment credentials."""

    endpoint: str
    deployment_name: str
    api_version: str
    api_key: str
    shape: CredentialShape = field(default=CredentialShape.AZURE, init=False)


@dataclass
class AwsCredentials:
    """AWS Bedrock credentials."""

    region: str
    access_key_id: str
    secret_access_key: str
    shape: CredentialShape = field(default=CredentialShape.AWS, init=False)


AccountCredentials = Union[ApiKeyCredentials, AzureCredentials, AwsCredentials]


# =============================================================================
# CATALOG TYPES
# =============================================================================


@dataclass
class ModelInfo:
    """
    A model exposed by a provider account.

    Costs are carried through for the dashboard only; routing never reads them.
    """

    id: str
    name: str
    capabilities: FrozenSet[Capability] = field(default_factory=frozenset)
    input_token_cost: Optional[float] = None
    output_token_cost: Optional[float] = None

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities


@dataclass(frozen=True)
class ProviderDefinition:
    """Immutable reference data describing an upstream provider."""

    id: str
    name: str
    provider_type: ProviderType
    credential_shape: CredentialShape
    default_models: tuple = ()
    supported_periods: tuple = tuple(QuotaPeriod.ordered())


# =============================================================================
# OBSERVABILITY TYPES
# =============================================================================


@dataclass
class QuotaTierStatus:
    """Point-in-time view of one quota tier, as rendered by the dashboard."""

    period: QuotaPeriod
    token_limit: Optional[int]
    tokens_used: int
    request_limit: Optional[int]
    requests_used: int
    remaining_tokens: int
    usage_percentage: float
    seconds_until_reset: int
    exhausted: bool
    window_start: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "period": self.period.value,
            "token_limit": self.token_limit,
            "tokens_used": self.tokens_used,
            "request_limit": self.request_limit,
            "requests_used": self.requests_used,
            "remaining_tokens": self.remaining_tokens,
            "usage_percentage": self.usage_percentage,
            "seconds_until_reset": self.seconds_until_reset,
            "exhausted": self.exhausted,
            "window_start": self.window_start,
        }


@dataclass
class AccountStatus:
    """Point-in-time view of an account and all of its tiers."""

    id: str
    provider_id: str
    name: str
    enabled: bool
    is_default: bool
    priority: int
    usable: bool
    blocking_tier: Optional[QuotaPeriod]
    next_reset: Optional[Dict[str, Any]]
    quota_tiers: List[QuotaTierStatus] = field(default_factory=list)

    @property
    def status(self) -> str:
        if not self.enabled:
            return "disabled"
        return "active" if self.usable else "exhausted"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "provider_id": self.provider_id,
            "name": self.name,
            "enabled": self.enabled,
            "is_default": self.is_default,
            "priority": self.priority,
            "usable": self.usable,
            "status": self.status,
            "blocking_tier": self.blocking_tier.value if self.blocking_tier else None,
            "next_reset": self.next_reset,
            "quota_tiers": [tier.to_dict() for tier in self.quota_tiers],
        }


@dataclass
class BlockedAccount:
    """Why a candidate account was passed over during selection."""

    account_id: str
    name: str
    priority: int
    blocking_tier: Optional[QuotaPeriod]
    seconds_until_reset: Optional[int]


@dataclass
class ProviderUsageSummary:
    provider_id: str
    total_accounts: int
    active_accounts: int
    exhausted_accounts: int
    disabled_accounts: int


# =============================================================================
# REQUEST TYPES
# =============================================================================


@dataclass
class RequestContext:
    """
    Context for a request being dispatched through the router.

    Contains all information needed to execute a request with
    failover across the provider's accounts.
    """

    provider_id: str
    model_id: str
    capability: Capability
    kwargs: Dict[str, Any]
    deadline: float
    estimated_tokens: Optional[int] = None


class ErrorAction:
    """
    Actions to take after an upstream error.

    Used by RequestExecutor to determine next steps.
    """

    ROTATE = "rotate"  # Try next account
    FAIL = "fail"  # Fail the request immediately
