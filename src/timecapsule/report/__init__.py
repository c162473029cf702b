"""
Console rendering for TimeCapsule.

Used by the CLI to print listings, capsule views, users and moderation stats.
"""

from timecapsule.report.console import (
    render_page,
    render_stats,
    render_summaries,
    render_users,
    render_view,
)

__all__ = [
    "render_page",
    "render_stats",
    "render_summaries",
    "render_users",
    "render_view",
]
