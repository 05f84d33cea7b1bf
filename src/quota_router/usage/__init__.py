# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from .recorder import ConsumptionRecorder
from .storage import UsageStorage, apply_snapshot, build_snapshot

__all__ = ["ConsumptionRecorder", "UsageStorage", "apply_snapshot", "build_snapshot"]
