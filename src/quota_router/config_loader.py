# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Account configuration loading.

Accounts come from two places:
- a JSON document ({"accounts": [...]}) named by QUOTA_ROUTER_ACCOUNTS_FILE
- provider API keys in the environment / .env file:

    OPENAI_API_KEY_1=sk-...
    OPENAI_API_KEY_1_PRIORITY=10
    OPENAI_API_KEY_1_QUOTA_MINUTE=90000:500     # tokens[:requests]
    OPENAI_API_KEY_1_QUOTA_DAY=2000000
"""

import hashlib
import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from dotenv import dotenv_values, load_dotenv

from .core.constants import ENV_ACCOUNTS_FILE
from .core.types import (
    AccountCredentials,
    ApiKeyCredentials,
    AwsCredentials,
    AzureCredentials,
    Capability,
    CredentialShape,
    ModelInfo,
    QuotaPeriod,
)
from .quota.account import ProviderAccount
from .registry.catalog import BUILTIN_PROVIDERS, default_models_for

lib_logger = logging.getLogger("quota_router")


class ConfigError(ValueError):
    """An account definition could not be parsed."""


# =============================================================================
# JSON DEFINITIONS
# =============================================================================


def credentials_from_dict(data: Mapping[str, Any]) -> AccountCredentials:
    shape = data.get("type", CredentialShape.API_KEY.value)
    try:
        if shape == CredentialShape.API_KEY.value:
            return ApiKeyCredentials(
                api_key=data["api_key"],
                organization_id=data.get("organization_id"),
                custom_endpoint=data.get("custom_endpoint"),
            )
        if shape == CredentialShape.AZURE.value:
            return AzureCredentials(
                endpoint=data["endpoint"],
                deployment_name=data["deployment_name"],
                api_version=data["api_version"],
                api_key=data["api_key"],
            )
        if shape == CredentialShape.AWS.value:
            return AwsCredentials(
                region=data["region"],
                access_key_id=data["access_key_id"],
                secret_access_key=data["secret_access_key"],
            )
    except KeyError as e:
        raise ConfigError(f"Missing credential field {e} for type '{shape}'") from e
    raise ConfigError(f"Unknown credential type '{shape}'")


def model_from_dict(data: Union[str, Mapping[str, Any]]) -> ModelInfo:
    if isinstance(data, str):
        return ModelInfo(id=data, name=data, capabilities=frozenset({Capability.LLM}))
    if not data.get("id"):
        raise ConfigError(f"Model definition missing 'id': {dict(data)}")
    try:
        capabilities = frozenset(
            Capability(c) for c in data.get("capabilities", [Capability.LLM.value])
        )
    except ValueError as e:
        raise ConfigError(f"Invalid capability for model '{data.get('id')}': {e}") from e
    return ModelInfo(
        id=data["id"],
        name=data.get("name", data["id"]),
        capabilities=capabilities,
        input_token_cost=data.get("input_token_cost"),
        output_token_cost=data.get("output_token_cost"),
    )


def account_from_dict(data: Mapping[str, Any]) -> ProviderAccount:
    """Build an account from its JSON definition."""
    try:
        provider_id = data["provider_id"]
        name = data.get("name", provider_id)
    except KeyError as e:
        raise ConfigError(f"Account definition missing {e}") from e

    credentials = credentials_from_dict(data.get("credentials", {}))
    if "models" in data:
        models = [model_from_dict(m) for m in data["models"]]
    else:
        models = default_models_for(provider_id)

    kwargs: Dict[str, Any] = {}
    if data.get("id"):
        kwargs["id"] = str(data["id"])
    account = ProviderAccount(
        provider_id=provider_id,
        name=name,
        credentials=credentials,
        enabled=bool(data.get("enabled", True)),
        is_default=bool(data.get("is_default", False)),
        priority=int(data.get("priority", 0)),
        models=models,
        **kwargs,
    )
    for quota in data.get("quotas", []):
        try:
            period = QuotaPeriod(quota["period"])
        except (KeyError, ValueError) as e:
            raise ConfigError(f"Invalid quota period in account '{name}': {e}") from e
        if period in account.quotas:
            raise ConfigError(f"Duplicate {period.value} quota in account '{name}'")
        account.set_quota(period, quota.get("token_limit"), quota.get("request_limit"))
    return account


def load_accounts_file(path: Union[str, Path]) -> List[ProviderAccount]:
    path = Path(path)
    with open(path, "r") as f:
        document = json.load(f)
    entries = document.get("accounts", []) if isinstance(document, dict) else document
    accounts = [account_from_dict(entry) for entry in entries]
    lib_logger.info(f"Loaded {len(accounts)} account(s) from {path}")
    return accounts


# =============================================================================
# ENVIRONMENT DISCOVERY
# =============================================================================


def account_id_for_key(provider_id: str, api_key: str) -> str:
    """Stable account id derived from the key, so counters survive renumbering."""
    digest = hashlib.sha256(api_key.encode("utf-8")).hexdigest()[:12]
    return f"{provider_id}:{digest}"


def _extract_key_number(key_name: str) -> int:
    """Extract the numeric suffix from a key name for proper sorting.

    Examples:
        OPENAI_API_KEY_1 -> 1
        OPENAI_API_KEY_10 -> 10
        OPENAI_API_KEY -> 0
    """
    match = re.search(r"_(\d+)$", key_name)
    return int(match.group(1)) if match else 0


def parse_quota_value(raw: str) -> Optional[tuple]:
    """Parse "tokens[:requests]" into (token_limit, request_limit)."""
    parts = raw.strip().split(":")
    try:
        token_limit = int(parts[0])
        request_limit = int(parts[1]) if len(parts) > 1 and parts[1] else None
    except ValueError:
        return None
    if len(parts) > 2:
        return None
    return token_limit, request_limit


def discover_env_accounts(env: Mapping[str, Optional[str]]) -> List[ProviderAccount]:
    """Create api-key accounts for every <PROVIDER>_API_KEY[_N] variable."""
    accounts: List[ProviderAccount] = []
    for provider_id, provider in BUILTIN_PROVIDERS.items():
        if provider.credential_shape != CredentialShape.API_KEY:
            continue
        pattern = re.compile(rf"^{re.escape(provider_id.upper())}_API_KEY(?:_(\d+))?$")
        key_names = sorted(
            (name for name in env if pattern.match(name) and env.get(name)),
            key=_extract_key_number,
        )
        for key_name in key_names:
            api_key = env[key_name].strip()
            account = ProviderAccount(
                id=account_id_for_key(provider_id, api_key),
                provider_id=provider_id,
                name=key_name,
                credentials=ApiKeyCredentials(api_key=api_key),
                models=default_models_for(provider_id),
            )
            priority = env.get(f"{key_name}_PRIORITY")
            if priority:
                try:
                    account.priority = int(priority)
                except ValueError:
                    lib_logger.warning(f"Invalid {key_name}_PRIORITY '{priority}', using 0")
            for period in QuotaPeriod.ordered():
                raw = env.get(f"{key_name}_QUOTA_{period.value.upper()}")
                if not raw:
                    continue
                parsed = parse_quota_value(raw)
                if parsed is None:
                    lib_logger.warning(
                        f"Invalid {key_name}_QUOTA_{period.value.upper()} '{raw}', "
                        f"expected tokens[:requests]"
                    )
                    continue
                account.set_quota(period, parsed[0], parsed[1])
            accounts.append(account)
    return accounts


def load_accounts(env_file: Optional[Union[str, Path]] = None) -> List[ProviderAccount]:
    """
    Load every configured account.

    Variables already set in the process environment win over the .env file.
    Accounts from the JSON file take precedence over discovered keys with the
    same id.
    """
    if env_file is not None:
        load_dotenv(env_file, override=False)
        env: Dict[str, Optional[str]] = {**dotenv_values(env_file), **os.environ}
    else:
        load_dotenv(override=False)
        env = dict(os.environ)

    accounts: Dict[str, ProviderAccount] = {}
    for account in discover_env_accounts(env):
        accounts[account.id] = account

    accounts_file = env.get(ENV_ACCOUNTS_FILE)
    if accounts_file:
        for account in load_accounts_file(accounts_file):
            accounts[account.id] = account

    if not accounts:
        lib_logger.warning("No provider accounts configured")
    return list(accounts.values())
