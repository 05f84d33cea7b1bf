# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from .base import AccountRegistry, InMemoryAccountRegistry
from .catalog import BUILTIN_PROVIDERS, default_models_for, make_model

__all__ = [
    "AccountRegistry",
    "InMemoryAccountRegistry",
    "BUILTIN_PROVIDERS",
    "default_models_for",
    "make_model",
]
