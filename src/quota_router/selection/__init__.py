# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from .engine import AccountSelector, CandidateSet, rank_accounts, selection_key

__all__ = ["AccountSelector", "CandidateSet", "rank_accounts", "selection_key"]
