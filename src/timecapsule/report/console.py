"""
Console rendering for TimeCapsule.

Renders capsule listings, single capsule views, the user listing and
moderation statistics with Rich. Rendering only: every value shown here was already authorized by
the access controller.

Design Principles:
    - Status at a glance: icons and colors for lock state and flags
    - Locked is a state, not an error: it renders with the unlock time
    - Metadata-only listings: no payload ever appears in a table
"""

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from timecapsule.schema import (
    AdminStats,
    CapsulePage,
    CapsuleState,
    CapsuleSummary,
    LockedView,
    DailyCount,
    RevealedView,
    UserPage,
    Visibility,
)

# Status icons
ICON_LOCKED = "[yellow]🔐[/yellow]"
ICON_UNLOCKED = "[green]✓[/green]"
ICON_PUBLIC = "[blue]🌍[/blue]"
ICON_ENCRYPTED = "🔒"
ICON_REPORTED = "[red]⚠[/red]"


def _when(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M UTC")


def render_summaries(
    console: Console,
    summaries: list[CapsuleSummary],
    title: str = "Capsules",
) -> None:
    """Print a table of capsule summaries."""
    if not summaries:
        console.print("[dim]No capsules found.[/dim]")
        return

    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("ID", style="cyan")
    table.add_column("Title")
    table.add_column("State", width=10)
    table.add_column("Unlocks")
    table.add_column("Flags")
    table.add_column("Reports", justify="right")

    for s in summaries:
        state = ICON_UNLOCKED + " unlocked" if s.state == CapsuleState.UNLOCKED else ICON_LOCKED + " locked"
        flags = []
        if s.visibility == Visibility.PUBLIC:
            flags.append(ICON_PUBLIC)
        if s.encrypted:
            flags.append(ICON_ENCRYPTED)
        if s.report_count and not s.reviewed:
            flags.append(ICON_REPORTED)
        table.add_row(
            s.id,
            escape(s.title),
            state,
            _when(s.unlock_at),
            " ".join(flags),
            str(s.report_count),
        )

    console.print(table)


def render_page(console: Console, page: CapsulePage) -> None:
    """Print one page of the moderation listing."""
    render_summaries(console, page.items, title="Capsule Moderation")
    console.print(f"[dim]Page {page.page} of {max(page.total_pages, 1)} ({page.total} capsules)[/dim]")


def render_view(console: Console, view: RevealedView | LockedView) -> None:
    """Print a single capsule as seen by its reader."""
    if isinstance(view, LockedView):
        console.print(
            Panel(
                f"This capsule's content will be revealed on [bold]{_when(view.unlock_at)}[/bold].",
                title=f"{ICON_LOCKED} {escape(view.title)}",
                border_style="yellow",
            )
        )
        return

    body = escape(view.message) or "[dim](no message)[/dim]"
    if view.media:
        body += f"\n\n[dim]Attached {view.media.media_type.value}: {escape(view.media.ref)}[/dim]"
    console.print(
        Panel(
            body,
            title=f"{ICON_UNLOCKED} {escape(view.title)}",
            subtitle=f"Unlocked on {_when(view.unlock_at)}",
            border_style="green",
        )
    )


def render_stats(console: Console, stats: AdminStats) -> None:
    """Print the moderation dashboard counters."""
    table = Table(title="TimeCapsule Stats", show_header=True, header_style="bold")
    table.add_column("Metric")
    table.add_column("Value", justify="right")

    rows = [
        ("Total Users", stats.total_users),
        ("Active Users", stats.active_users),
        ("Banned Users", stats.banned_users),
        ("Total Capsules", stats.total_capsules),
        ("Locked Capsules", stats.locked_capsules),
        ("Unlocked Capsules", stats.unlocked_capsules),
        ("Reported Capsules", stats.reported_capsules),
        ("Reviewed Capsules", stats.reviewed_capsules),
        ("Public Capsules", stats.public_capsules),
        ("Encrypted Capsules", stats.encrypted_capsules),
    ]
    for label, value in rows:
        table.add_row(label, str(value))
    console.print(table)

    _render_series(console, "Capsules created", stats.capsule_creations, "magenta")
    _render_series(console, "Users registered", stats.user_registrations, "blue")


def _render_series(console: Console, title: str, series: list[DailyCount], color: str) -> None:
    if not series:
        return
    peak = max(c.count for c in series) or 1
    console.print(f"[bold]{title}[/bold]")
    for c in series:
        bar = "█" * round(20 * c.count / peak)
        console.print(f"  {c.day.isoformat()}  [{color}]{bar}[/{color}] {c.count}")


def render_users(console: Console, page: UserPage) -> None:
    """Print one page of the moderation user listing."""
    if not page.items:
        console.print("[dim]No users found.[/dim]")
    else:
        table = Table(title="User Moderation", show_header=True, header_style="bold")
        table.add_column("ID", style="cyan")
        table.add_column("Name")
        table.add_column("Role")
        table.add_column("Status")
        table.add_column("Joined")
        for u in page.items:
            status = "[red]banned[/red]" if u.banned else "[green]active[/green]"
            table.add_row(escape(u.id), escape(u.name), u.role.value, status, _when(u.created_at))
        console.print(table)
    console.print(f"[dim]Page {page.page} of {max(page.total_pages, 1)} ({page.total} users)[/dim]")
