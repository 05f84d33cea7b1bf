# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""
Quota Status Viewer.

Renders per-provider account health from a router stats snapshot:
either a local router built from the configured accounts and the
persisted usage file, or a running service's /v1/quota-stats endpoint.
"""

import argparse
import asyncio
import os
import time
from typing import Any, Dict, List, Optional

import httpx
from rich.console import Console
from rich.panel import Panel
from rich.table import Table


# =============================================================================
# DISPLAY CONFIGURATION
# =============================================================================

TABLE_PROVIDER_WIDTH = 12
TIER_NAME_WIDTH = 8
TIER_USAGE_WIDTH = 17
TIER_PCT_WIDTH = 6
TIER_BAR_WIDTH = 20

# Account status icons and colors: (icon, label, color)
STATUS_DISPLAY = {
    "active": (":white_check_mark:", "Active", "green"),
    "exhausted": (":no_entry:", "Exhausted", "red"),
    "disabled": (":pause_button:", "Disabled", "dim"),
}

# =============================================================================


def clear_screen():
    """Clear the terminal screen."""
    os.system("cls" if os.name == "nt" else "clear")


def format_tokens(count: Optional[int]) -> str:
    """Format token count for display (e.g., 125000 -> 125k)."""
    if count is None:
        return "-"
    if count >= 1_000_000:
        return f"{count / 1_000_000:.1f}M"
    elif count >= 1_000:
        return f"{count / 1_000:.0f}k"
    return str(count)


def format_cooldown(seconds: int) -> str:
    """Format seconds until reset as human-readable string."""
    if seconds < 60:
        return f"{seconds}s"
    elif seconds < 3600:
        mins = seconds // 60
        secs = seconds % 60
        return f"{mins}m {secs}s" if secs > 0 else f"{mins}m"
    elif seconds < 86400:
        hours = seconds // 3600
        mins = (seconds % 3600) // 60
        return f"{hours}h {mins}m" if mins > 0 else f"{hours}h"
    days = seconds // 86400
    hours = (seconds % 86400) // 3600
    return f"{days}d {hours}h" if hours > 0 else f"{days}d"


def create_progress_bar(percent: Optional[float], width: int = TIER_BAR_WIDTH) -> str:
    """Create a text-based progress bar."""
    if percent is None:
        return "░" * width
    percent = max(0.0, min(100.0, percent))
    filled = int(percent / 100 * width)
    return "▓" * filled + "░" * (width - filled)


def usage_color(percent: float, exhausted: bool) -> str:
    if exhausted:
        return "red"
    if percent >= 80:
        return "yellow"
    return "green"


def format_tier_line(tier: Dict[str, Any]) -> str:
    """One tier row: name, used/limit, percentage, bar, reset countdown."""
    percent = tier.get("usage_percentage", 0.0) or 0.0
    exhausted = tier.get("exhausted", False)
    color = usage_color(percent, exhausted)
    usage = (
        f"{format_tokens(tier.get('tokens_used', 0))}/"
        f"{format_tokens(tier.get('token_limit'))}"
    )
    line = (
        f"{tier.get('period', '?'):<{TIER_NAME_WIDTH}} "
        f"{usage:>{TIER_USAGE_WIDTH}} "
        f"[{color}]{percent:>{TIER_PCT_WIDTH - 1}.1f}% "
        f"{create_progress_bar(percent)}[/{color}]"
    )
    if tier.get("request_limit"):
        line += f" req {tier.get('requests_used', 0)}/{tier['request_limit']}"
    line += f" [dim]resets in {format_cooldown(int(tier.get('seconds_until_reset', 0)))}[/dim]"
    return line


class QuotaViewer:
    """Renders router stats snapshots with rich."""

    def __init__(self, console: Optional[Console] = None):
        # Use emoji_variant="text" for more consistent width calculations
        self.console = console or Console(emoji_variant="text")
        self.cached_stats: Optional[Dict[str, Any]] = None
        self.last_error: Optional[str] = None

    # =========================================================================
    # DATA SOURCES
    # =========================================================================

    def fetch_stats(
        self,
        base_url: str,
        provider: Optional[str] = None,
        api_key: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Fetch quota stats from a running service.

        Args:
            base_url: Service root, e.g. http://127.0.0.1:8000
            provider: Optional provider filter
            api_key: Optional bearer token

        Returns:
            Stats dict or None on failure (see last_error)
        """
        url = f"{base_url.rstrip('/')}/v1/quota-stats"
        params = {"provider": provider} if provider else None
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}

        try:
            with httpx.Client(timeout=30.0) as client:
                response = client.get(url, params=params, headers=headers)

                if response.status_code == 401:
                    self.last_error = "Authentication failed. Check API key."
                    return None
                elif response.status_code != 200:
                    self.last_error = (
                        f"HTTP {response.status_code}: {response.text[:100]}"
                    )
                    return None

                self.cached_stats = response.json()
                self.last_error = None
                return self.cached_stats

        except httpx.ConnectError:
            self.last_error = "Connection failed. Is the service running?"
            return None
        except httpx.TimeoutException:
            self.last_error = "Request timed out."
            return None

    async def load_local_stats(
        self, provider: Optional[str] = None, env_file: Optional[str] = None
    ) -> Dict[str, Any]:
        """Build a router from local configuration and snapshot it."""
        from quota_router import AccountRouter, InMemoryAccountRegistry
        from quota_router.config_loader import load_accounts

        registry = InMemoryAccountRegistry(load_accounts(env_file))
        router = AccountRouter(registry, sweep_interval=0)
        await router.initialize()
        try:
            self.cached_stats = await router.get_stats(provider)
        finally:
            await router.shutdown()
        self.last_error = None
        return self.cached_stats

    # =========================================================================
    # RENDERING
    # =========================================================================

    def render_summary(self, stats: Dict[str, Any]) -> Table:
        table = Table(box=None, show_header=True, header_style="bold", padding=(0, 1))
        table.add_column("Provider", style="cyan", min_width=TABLE_PROVIDER_WIDTH)
        table.add_column("Accounts", justify="right")
        table.add_column("Active", justify="right", style="green")
        table.add_column("Exhausted", justify="right", style="red")
        table.add_column("Disabled", justify="right", style="dim")

        for provider, prov_stats in sorted(stats.get("providers", {}).items()):
            summary = prov_stats.get("summary", {})
            table.add_row(
                provider,
                str(summary.get("total_accounts", 0)),
                str(summary.get("active_accounts", 0)),
                str(summary.get("exhausted_accounts", 0)),
                str(summary.get("disabled_accounts", 0)),
            )
        return table

    def render_account_panel(self, idx: int, account: Dict[str, Any]) -> Panel:
        """Render a single account as a panel."""
        status = account.get("status", "active")
        icon, label, color = STATUS_DISPLAY.get(status, STATUS_DISPLAY["active"])
        status_str = f"[{color}]{icon} {label}[/{color}]"

        blocking = account.get("blocking_tier")
        if status == "exhausted" and blocking:
            status_str += f" [red]({blocking} limit)[/red]"

        default_str = " [bold]*default*[/bold]" if account.get("is_default") else ""
        header = (
            f"[{idx}] {account.get('name', account.get('id'))}{default_str} "
            f"[dim]priority {account.get('priority', 0)}[/dim] {status_str}"
        )

        lines: List[str] = []
        tiers = account.get("quota_tiers", [])
        if not tiers:
            lines.append("[dim]No quota tiers configured (unlimited)[/dim]")
        for tier in tiers:
            lines.append(format_tier_line(tier))

        next_reset = account.get("next_reset")
        if next_reset:
            lines.append("")
            lines.append(
                f"[yellow]Near limit: {next_reset.get('period')} resets in "
                f"{format_cooldown(int(next_reset.get('seconds', 0)))}[/yellow]"
            )

        return Panel(
            "\n".join(lines),
            title=header,
            title_align="left",
            border_style=color if color != "dim" else "white",
            expand=True,
        )

    def show(self, stats: Dict[str, Any], provider: Optional[str] = None) -> None:
        """Print the summary table and, per provider, its account panels."""
        generated_at = stats.get("generated_at")
        age = f"Data age: {int(time.time() - generated_at)}s" if generated_at else ""

        self.console.print("━" * 78)
        self.console.print(
            f"[bold cyan]:chart_with_upwards_trend: Quota Status[/bold cyan]  {age}"
        )
        self.console.print("━" * 78)

        providers = stats.get("providers", {})
        if not providers:
            self.console.print("[yellow]No accounts configured.[/yellow]")
            return

        self.console.print(self.render_summary(stats))
        for pid, prov_stats in sorted(providers.items()):
            if provider and pid != provider:
                continue
            self.console.print()
            self.console.print(f"[bold cyan]{pid}[/bold cyan]")
            for idx, account in enumerate(prov_stats.get("accounts", []), 1):
                self.console.print(self.render_account_panel(idx, account))

    def run(
        self,
        url: Optional[str] = None,
        provider: Optional[str] = None,
        api_key: Optional[str] = None,
        env_file: Optional[str] = None,
        watch: int = 0,
    ) -> int:
        """
        Fetch and display stats, optionally refreshing every `watch` seconds.

        Returns:
            Process exit code
        """
        while True:
            if url:
                stats = self.fetch_stats(url, provider, api_key)
            else:
                stats = asyncio.run(self.load_local_stats(provider, env_file))

            if stats is None:
                self.console.print(f"[red]{self.last_error}[/red]")
                return 1

            if watch > 0:
                clear_screen()
            self.show(stats, provider)
            if watch <= 0:
                return 0
            try:
                time.sleep(watch)
            except KeyboardInterrupt:
                return 0


def run_quota_viewer(argv: Optional[List[str]] = None) -> int:
    """Entry point for the quota viewer."""
    parser = argparse.ArgumentParser(description="Quota status viewer")
    parser.add_argument(
        "--url", help="Service base URL; omit to read the local configuration"
    )
    parser.add_argument("--provider", help="Only show this provider's accounts")
    parser.add_argument(
        "--api-key", default=os.environ.get("QUOTA_VIEWER_API_KEY"), help="Bearer token"
    )
    parser.add_argument("--env-file", help="Path to a .env file with account keys")
    parser.add_argument(
        "--watch", type=int, default=0, help="Refresh interval in seconds"
    )
    args = parser.parse_args(argv)

    viewer = QuotaViewer()
    return viewer.run(
        url=args.url,
        provider=args.provider,
        api_key=args.api_key,
        env_file=args.env_file,
        watch=args.watch,
    )


if __name__ == "__main__":
    raise SystemExit(run_quota_viewer())
