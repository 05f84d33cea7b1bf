# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Built-in provider definitions and their default model catalogs.
"""

from typing import Dict, List

from ..core.types import (
    Capability,
    CredentialShape,
    ModelInfo,
    ProviderDefinition,
    ProviderType,
)


def make_model(name: str) -> ModelInfo:
    """
    Build a catalog entry from a model name.

    Names mentioning "embed" are embedding models, everything else is an LLM.
    """
    model_id = name.lower().replace(" ", "-")
    if "embed" in name.lower():
        capabilities = frozenset({Capability.EMBEDDING})
    else:
        capabilities = frozenset({Capability.LLM})
    return ModelInfo(id=model_id, name=name, capabilities=capabilities)


# (id, display name, type, credential shape, default models)
_BUILTIN_PROVIDERS = [
    (
        "openai",
        "OpenAI",
        ProviderType.BOTH,
        CredentialShape.API_KEY,
        [
            "gpt-4o",
            "gpt-4o-mini",
            "gpt-4-turbo",
            "o1",
            "o1-mini",
            "text-embedding-3-small",
            "text-embedding-3-large",
        ],
    ),
    (
        "anthropic",
        "Anthropic",
        ProviderType.LLM,
        CredentialShape.API_KEY,
        [
            "claude-3-5-sonnet-20241022",
            "claude-3-5-haiku-20241022",
            "claude-3-opus-20240229",
        ],
    ),
    (
        "gemini",
        "Google Gemini",
        ProviderType.BOTH,
        CredentialShape.API_KEY,
        ["gemini-2.0-flash", "gemini-1.5-pro", "gemini-1.5-flash", "text-embedding-004"],
    ),
    (
        "mistral",
        "Mistral AI",
        ProviderType.BOTH,
        CredentialShape.API_KEY,
        [
            "mistral-large-latest",
            "mistral-small-latest",
            "codestral-latest",
            "mistral-embed",
        ],
    ),
    (
        "groq",
        "Groq",
        ProviderType.LLM,
        CredentialShape.API_KEY,
        ["llama-3.3-70b-versatile", "llama-3.1-8b-instant", "mixtral-8x7b-32768"],
    ),
    (
        "together",
        "Together AI",
        ProviderType.BOTH,
        CredentialShape.API_KEY,
        [
            "meta-llama/Llama-3.3-70B-Instruct-Turbo",
            "meta-llama/Llama-3.2-90B-Vision-Instruct-Turbo",
        ],
    ),
    (
        "cohere",
        "Cohere",
        ProviderType.BOTH,
        CredentialShape.API_KEY,
        [
            "command-a-03-2025",
            "command-r-plus-08-2024",
            "command-r-08-2024",
            "embed-v4.0",
        ],
    ),
    (
        "voyage",
        "Voyage AI",
        ProviderType.EMBEDDING,
        CredentialShape.API_KEY,
        ["voyage-3", "voyage-3-lite", "voyage-code-3"],
    ),
    (
        "jina",
        "Jina AI",
        ProviderType.EMBEDDING,
        CredentialShape.API_KEY,
        ["jina-embeddings-v3", "jina-clip-v2"],
    ),
    (
        "azure",
        "Azure OpenAI",
        ProviderType.BOTH,
        CredentialShape.AZURE,
        ["gpt-4", "gpt-35-turbo"],
    ),
    (
        "bedrock",
        "AWS Bedrock",
        ProviderType.BOTH,
        CredentialShape.AWS,
        ["anthropic.claude-3-sonnet", "amazon.titan-embed-text-v1"],
    ),
]


def _catalog_models(provider_type: ProviderType, names: List[str]) -> tuple:
    models = [make_model(name) for name in names]
    # Embedding-only providers expose every catalog model for embeddings,
    # whatever the model name says.
    if provider_type == ProviderType.EMBEDDING:
        for model in models:
            model.capabilities = frozenset({Capability.EMBEDDING})
    return tuple(models)


BUILTIN_PROVIDERS: Dict[str, ProviderDefinition] = {
    provider_id: ProviderDefinition(
        id=provider_id,
        name=name,
        provider_type=provider_type,
        credential_shape=shape,
        default_models=_catalog_models(provider_type, models),
    )
    for provider_id, name, provider_type, shape, models in _BUILTIN_PROVIDERS
}


def default_models_for(provider_id: str) -> List[ModelInfo]:
    """
    Fresh copies of a provider's default catalog.

    Accounts own their catalogs, so each account gets its own list.
    """
    provider = BUILTIN_PROVIDERS.get(provider_id)
    if provider is None:
        return []
    return [
        ModelInfo(
            id=model.id,
            name=model.name,
            capabilities=model.capabilities,
            input_token_cost=model.input_token_cost,
            output_token_cost=model.output_token_cost,
        )
        for model in provider.default_models
    ]
