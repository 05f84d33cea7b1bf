# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from .executor import (
    RequestExecutor,
    classify_error,
    credential_kwargs,
    litellm_model_name,
)

__all__ = [
    "RequestExecutor",
    "classify_error",
    "credential_kwargs",
    "litellm_model_name",
]
