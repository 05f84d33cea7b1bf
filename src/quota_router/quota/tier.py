# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Fixed-width quota window tracking for one (account, period) pair.

Windows roll lazily: every read and write first calls maybe_roll_window(),
so a tier never needs a background timer to reset and never drifts when
the process sat idle across several windows.
"""

import math
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..core.constants import NEAR_LIMIT_PERCENTAGE
from ..core.types import QuotaPeriod, QuotaTierStatus


def _now(now: Optional[float]) -> float:
    return time.time() if now is None else now


@dataclass
class QuotaTier:
    """
    Consumption counters for one quota period of an account.

    A token_limit of 0 or None denies every request: omitting a limit
    disables the tier, it never means "unlimited".
    """

    period: QuotaPeriod
    token_limit: Optional[int]
    request_limit: Optional[int] = None
    tokens_used: int = 0
    requests_used: int = 0
    window_start: float = field(default_factory=time.time)

    @property
    def duration(self) -> int:
        return self.period.seconds

    @property
    def window_end(self) -> float:
        return self.window_start + self.duration

    # =========================================================================
    # WINDOW ROLLOVER
    # =========================================================================

    def maybe_roll_window(self, now: Optional[float] = None) -> bool:
        """
        Advance to the window containing `now` if the current one elapsed.

        The new window start is aligned to a whole number of durations after
        the old one, so heavy load never shifts the grid.

        Returns:
            True if the counters were reset
        """
        now = _now(now)
        if now < self.window_end:
            return False
        elapsed_windows = math.floor((now - self.window_start) / self.duration)
        self.window_start += self.duration * elapsed_windows
        self.tokens_used = 0
        self.requests_used = 0
        return True

    def seconds_until_reset(self, now: Optional[float] = None) -> int:
        """Whole seconds until the current window ends, floored at 0."""
        remaining = self.window_end - _now(now)
        if remaining <= 0:
            return 0
        return int(math.ceil(remaining))

    # =========================================================================
    # LIMIT CHECKS
    # =========================================================================

    @property
    def is_denied(self) -> bool:
        """A missing or zero token limit blocks the tier in every window."""
        return not self.token_limit

    def is_exhausted(self) -> bool:
        """
        Check the counters of the current window against the limits.

        Callers are expected to roll the window first; see Account.check_usable.
        """
        if self.is_denied:
            return True
        if self.tokens_used >= self.token_limit:
            return True
        if self.request_limit is not None and self.requests_used >= self.request_limit:
            return True
        return False

    def remaining_tokens(self) -> int:
        if not self.token_limit:
            return 0
        return max(0, self.token_limit - self.tokens_used)

    def usage_percentage(self) -> float:
        if not self.token_limit:
            return 100.0
        return round(self.tokens_used / self.token_limit * 100.0, 2)

    @property
    def near_limit(self) -> bool:
        return self.is_exhausted() or self.usage_percentage() > NEAR_LIMIT_PERCENTAGE

    # =========================================================================
    # RECORDING
    # =========================================================================

    def record_usage(
        self, tokens: int, requests: int = 1, now: Optional[float] = None
    ) -> None:
        """Add to the counters of the window containing `now`."""
        if tokens < 0 or requests < 0:
            raise ValueError(
                f"Usage deltas must be non-negative (tokens={tokens}, requests={requests})"
            )
        self.maybe_roll_window(now)
        self.tokens_used += tokens
        self.requests_used += requests

    def update_limits(
        self, token_limit: Optional[int], request_limit: Optional[int]
    ) -> None:
        """Change the limits without touching the current window's counters."""
        self.token_limit = token_limit
        self.request_limit = request_limit

    # =========================================================================
    # VIEWS AND PERSISTENCE
    # =========================================================================

    def status(self, now: Optional[float] = None) -> QuotaTierStatus:
        now = _now(now)
        self.maybe_roll_window(now)
        return QuotaTierStatus(
            period=self.period,
            token_limit=self.token_limit,
            tokens_used=self.tokens_used,
            request_limit=self.request_limit,
            requests_used=self.requests_used,
            remaining_tokens=self.remaining_tokens(),
            usage_percentage=self.usage_percentage(),
            seconds_until_reset=self.seconds_until_reset(now),
            exhausted=self.is_exhausted(),
            window_start=self.window_start,
        )

    def to_record(self) -> Dict[str, Any]:
        """The persisted counter state; limits come from configuration."""
        return {
            "tokens_used": self.tokens_used,
            "requests_used": self.requests_used,
            "window_start": self.window_start,
        }

    def restore(self, record: Dict[str, Any]) -> None:
        """Load persisted counters. Stale windows roll on the next read."""
        self.tokens_used = int(record.get("tokens_used", 0))
        self.requests_used = int(record.get("requests_used", 0))
        self.window_start = float(record.get("window_start", self.window_start))
