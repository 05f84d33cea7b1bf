# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

import logging
import os

lib_logger = logging.getLogger("quota_router")

# =============================================================================
# CONFIGURATION DEFAULTS
# =============================================================================
# These can be overridden via environment variables.

# Max seconds a selection may spend waiting on the account registry
# Override: QUOTA_ROUTER_SELECTION_TIMEOUT=<seconds>
DEFAULT_SELECTION_TIMEOUT: float = 5.0

# Interval of the eager window sweep; 0 disables it
# Override: QUOTA_ROUTER_SWEEP_INTERVAL=<seconds>
DEFAULT_SWEEP_INTERVAL: int = 30

# Delay before dirty usage counters are flushed to disk
# Override: QUOTA_ROUTER_SAVE_DEBOUNCE=<seconds>
DEFAULT_SAVE_DEBOUNCE: float = 1.0

# Overall budget for one executed request, across account rotations
# Override: QUOTA_ROUTER_REQUEST_TIMEOUT=<seconds>
DEFAULT_REQUEST_TIMEOUT: int = 60

ENV_SELECTION_TIMEOUT = "QUOTA_ROUTER_SELECTION_TIMEOUT"
ENV_SWEEP_INTERVAL = "QUOTA_ROUTER_SWEEP_INTERVAL"
ENV_SAVE_DEBOUNCE = "QUOTA_ROUTER_SAVE_DEBOUNCE"
ENV_REQUEST_TIMEOUT = "QUOTA_ROUTER_REQUEST_TIMEOUT"
ENV_USAGE_FILE = "QUOTA_ROUTER_USAGE_FILE"
ENV_ACCOUNTS_FILE = "QUOTA_ROUTER_ACCOUNTS_FILE"

# Usage percentage above which a tier is reported in next_reset
NEAR_LIMIT_PERCENTAGE: float = 80.0


def env_int(name: str, default: int) -> int:
    """Parse an integer from environment variable with fallback to default."""
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        lib_logger.warning(f"Invalid {name} '{raw}'. Falling back to {default}.")
        return default


def env_float(name: str, default: float) -> float:
    """Parse a float from environment variable with fallback to default."""
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        lib_logger.warning(f"Invalid {name} '{raw}'. Falling back to {default}.")
        return default
