# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Durable storage for quota counters.

One record per (account id, period) holding tokens_used, requests_used and
window_start. Limits are configuration and are never persisted, so a tier is
rebuilt from its record plus the static account definition.
"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Union

import aiofiles

from ..core.types import QuotaPeriod
from ..quota.account import ProviderAccount

lib_logger = logging.getLogger("quota_router")

UsageRecords = Dict[str, Dict[str, Dict[str, Any]]]


def build_snapshot(accounts: Iterable[ProviderAccount]) -> UsageRecords:
    """Persistable counters of every tier of every account."""
    return {
        account.id: {
            tier.period.value: tier.to_record() for tier in account.ordered_tiers()
        }
        for account in accounts
        if account.quotas
    }


def apply_snapshot(accounts: Iterable[ProviderAccount], records: UsageRecords) -> int:
    """
    Restore persisted counters into configured tiers.

    Records for accounts or periods no longer configured are ignored.

    Returns:
        Number of tiers restored
    """
    restored = 0
    for account in accounts:
        for period_name, record in records.get(account.id, {}).items():
            try:
                period = QuotaPeriod(period_name)
            except ValueError:
                lib_logger.warning(
                    f"Ignoring unknown quota period '{period_name}' for account {account.id}"
                )
                continue
            tier = account.quotas.get(period)
            if tier is None:
                continue
            tier.restore(record)
            restored += 1
    return restored


class UsageStorage:
    """
    JSON file store for usage counters.

    Writes go to a temporary file that replaces the target, so a crash mid
    write leaves the previous snapshot intact. Every mark_dirty() bumps a
    version; a write only clears the versions its snapshot covered, so a
    failed or cancelled write leaves the store dirty for the next flush.
    """

    def __init__(self, file_path: Union[str, Path]):
        self.file_path = Path(file_path)
        self._version = 0
        self._saved_version = 0
        self._lock = asyncio.Lock()

    @property
    def dirty(self) -> bool:
        return self._version != self._saved_version

    @property
    def version(self) -> int:
        return self._version

    def mark_dirty(self) -> None:
        self._version += 1

    async def load(self) -> UsageRecords:
        """Load persisted counters. Missing or corrupt files yield empty state."""
        if not self.file_path.exists():
            return {}
        try:
            async with aiofiles.open(self.file_path, "r") as f:
                content = await f.read()
            data = json.loads(content) if content.strip() else {}
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as e:
            lib_logger.warning(
                f"Corrupted usage file {self.file_path}: {e}. Starting fresh."
            )
            return {}
        except OSError as e:
            lib_logger.warning(
                f"Cannot read usage file {self.file_path}: {e}. Using empty state."
            )
            return {}
        if not isinstance(data, dict):
            lib_logger.warning(f"Unexpected usage file layout in {self.file_path}")
            return {}
        return data

    async def save(
        self,
        records: UsageRecords,
        version: Optional[int] = None,
        force: bool = False,
    ) -> bool:
        """
        Write the counters if anything changed since the last write.

        Args:
            records: Snapshot to write
            version: Store version captured before the snapshot was built;
                defaults to the current version
            force: Write even when nothing is dirty

        Returns:
            True if the file was written
        """
        version = self._version if version is None else version
        async with self._lock:
            if not self.dirty and not force:
                return False
            tmp_path = self.file_path.with_name(self.file_path.name + ".tmp")
            try:
                self.file_path.parent.mkdir(parents=True, exist_ok=True)
                async with aiofiles.open(tmp_path, "w") as f:
                    await f.write(json.dumps(records, indent=2, sort_keys=True))
                os.replace(tmp_path, self.file_path)
            except OSError as e:
                lib_logger.error(
                    f"Failed to write usage file {self.file_path}: {e}. Will retry."
                )
                return False
            self._saved_version = max(self._saved_version, version)
            lib_logger.debug(f"Saved usage counters for {len(records)} account(s)")
            return True
