# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from .account import AccountUpdate, ProviderAccount, QuotaUpdate
from .tier import QuotaTier

__all__ = ["AccountUpdate", "ProviderAccount", "QuotaTier", "QuotaUpdate"]
