"""
CLI entry point for TimeCapsule.

This module provides the Typer-based command-line interface for operating a
TimeCapsule store by hand.

Commands:
    keygen      Generate a payload encryption key
    create      Create a capsule
    show        Read a capsule (locked capsules show their unlock time)
    list        List your own capsules
    public      List public capsules that are unlocked
    delete      Delete one or more capsules
    report      Report a capsule
    review      Mark a capsule as reviewed (moderators)
    admin-list  Page through all capsules (moderators)
    stats       Show moderation statistics (moderators)
    users       Page through users (moderators)
    ban         Ban a user (moderators)
    unban       Lift a ban (moderators)
    delete-user Remove a user and their capsules (moderators)

Architecture Note:
    The CLI is intentionally thin - it resolves the acting user from the
    user directory file and delegates every decision to the AccessController.
"""

import json
import logging
import os
from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Annotated, NoReturn, Optional

import pydantic
import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from timecapsule import __version__
from timecapsule.access import AccessController, build_controller
from timecapsule.config import Settings, load_config
from timecapsule.crypto import KeyProvider, StaticKeyProvider, generate_key
from timecapsule.errors import TimeCapsuleError, ValidationError
from timecapsule.notify import Notifier, NullNotifier, WebhookNotifier
from timecapsule.report import render_page, render_stats, render_summaries, render_users, render_view
from timecapsule.schema import Actor, AdminFilter, CapsuleCreate, MediaRef, MediaType, Role, UserFilter, Visibility
from timecapsule.store import CapsuleStore
from timecapsule.users import load_users, save_users

app = typer.Typer(
    name="timecapsule",
    help="Create, read and moderate time-locked capsules.",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()
err_console = Console(stderr=True)

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to a settings YAML file.", exists=True, readable=True),
]
DbOption = Annotated[
    Optional[Path],
    typer.Option("--db", help="Path to the SQLite database (overrides the config)."),
]
UsersOption = Annotated[
    Path,
    typer.Option("--users", "-u", help="Path to the user directory YAML file.", exists=True, readable=True),
]
ActorOption = Annotated[str, typer.Option("--as", help="Id of the acting user.")]
JsonOption = Annotated[bool, typer.Option("--json", help="Output results in JSON format.")]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]timecapsule[/bold] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", help="Log engine activity to stderr."),
    ] = False,
) -> None:
    """
    TimeCapsule - messages that stay sealed until their unlock time.
    """
    if verbose:
        logging.basicConfig(
            level=logging.INFO,
            format="%(message)s",
            handlers=[RichHandler(console=err_console, show_path=False)],
        )


# =============================================================================
# Wiring
# =============================================================================


def _settings(config: Path | None, db: Path | None) -> Settings:
    settings = load_config(config) if config else Settings()
    if db is not None:
        settings = settings.model_copy(update={"db_path": db})
    return settings


def _keys(settings: Settings) -> KeyProvider | None:
    if settings.key_env_var not in os.environ:
        return None
    return StaticKeyProvider.from_env(settings.key_env_var, key_id=settings.key_id)


def _notifier(settings: Settings) -> Notifier:
    if settings.webhook_url:
        return WebhookNotifier(settings.webhook_url, timeout_seconds=settings.webhook_timeout_seconds)
    return NullNotifier()


@contextmanager
def _session(
    config: Path | None,
    db: Path | None,
    users: Path,
    actor_id: str,
    json_output: bool = False,
) -> Generator[tuple[AccessController, Actor], None, None]:
    """
    Open the store, build the controller and resolve the acting user.

    Setup failures (bad config, user file or key, unopenable database) end
    the command through _fail like any other error.
    """
    try:
        settings = _settings(config, db)
        directory = load_users(users)
        keys = _keys(settings)
    except TimeCapsuleError as e:
        _fail(e, json_output)
    except (OSError, ValueError, yaml.YAMLError, pydantic.ValidationError) as e:
        _fail(ValidationError(field_name="setup", message=f"Invalid setup: {e}"), json_output)

    user = directory.get_user(actor_id)
    actor = Actor(user_id=actor_id, role=user.role if user else Role.USER)

    try:
        store = CapsuleStore(settings.db_path, timeout_seconds=settings.store_timeout_seconds)
    except TimeCapsuleError as e:
        _fail(e, json_output)
    try:
        controller = build_controller(
            store,
            directory,
            keys=keys,
            notifier=_notifier(settings),
            settings=settings,
        )
        yield controller, actor
    finally:
        store.close()


def _fail(error: TimeCapsuleError, json_output: bool) -> NoReturn:
    if json_output:
        print(json.dumps(error.to_dict(), indent=2, default=str))
    else:
        console.print(f"[red]{escape(str(error))}[/red]")
    raise typer.Exit(code=1)


def _print_json(data: object) -> None:
    print(json.dumps(data, indent=2, default=str))


# =============================================================================
# Commands
# =============================================================================


@app.command()
def keygen() -> None:
    """
    Generate a base64 AES-256 key for encrypted capsules.

    Example:
        $ export TIMECAPSULE_KEY=$(timecapsule keygen)
    """
    print(generate_key())


@app.command()
def create(
    actor_id: ActorOption,
    users: UsersOption,
    title: Annotated[str, typer.Option("--title", "-t", help="Capsule title.")],
    unlock_at: Annotated[
        str,
        typer.Option("--unlock-at", help="Unlock time, ISO 8601 with timezone (e.g. 2030-01-01T00:00:00Z)."),
    ],
    message: Annotated[str, typer.Option("--message", "-m", help="Message to seal.")] = "",
    public: Annotated[bool, typer.Option("--public", help="Make the capsule public once unlocked.")] = False,
    encrypt: Annotated[bool, typer.Option("--encrypt", help="Encrypt the message at rest.")] = False,
    media_ref: Annotated[Optional[str], typer.Option("--media-ref", help="Media store reference.")] = None,
    media_type: Annotated[MediaType, typer.Option("--media-type", help="Kind of attached media.")] = MediaType.FILE,
    config: ConfigOption = None,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """
    Create a capsule.

    Example:
        $ timecapsule create --as alice -u users.yaml -t "Hello" -m "..." --unlock-at 2030-01-01T00:00:00Z
    """
    try:
        request = CapsuleCreate(
            title=title,
            message=message,
            media=MediaRef(ref=media_ref, media_type=media_type) if media_ref else None,
            unlock_at=datetime.fromisoformat(unlock_at),
            visibility=Visibility.PUBLIC if public else Visibility.PRIVATE,
            encrypted=encrypt,
        )
    except (ValueError, pydantic.ValidationError) as e:
        _fail(ValidationError(field_name="request", message=f"Invalid capsule: {e}"), json_output)

    with _session(config, db, users, actor_id, json_output) as (controller, actor):
        try:
            summary = controller.create_capsule(actor, request)
        except TimeCapsuleError as e:
            _fail(e, json_output)

    if json_output:
        _print_json(summary.model_dump(mode="json"))
    else:
        console.print(f"[green]Created capsule[/green] [cyan]{summary.id}[/cyan] ({summary.state.value})")


@app.command()
def show(
    capsule_id: Annotated[str, typer.Argument(help="The capsule to read.")],
    actor_id: ActorOption,
    users: UsersOption,
    config: ConfigOption = None,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Read a capsule. Locked capsules show their unlock time."""
    with _session(config, db, users, actor_id, json_output) as (controller, actor):
        try:
            view = controller.get_capsule(actor, capsule_id)
        except TimeCapsuleError as e:
            _fail(e, json_output)

    if json_output:
        _print_json(view.model_dump(mode="json"))
    else:
        render_view(console, view)


@app.command("list")
def list_owned(
    actor_id: ActorOption,
    users: UsersOption,
    config: ConfigOption = None,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """List your own capsules."""
    with _session(config, db, users, actor_id, json_output) as (controller, actor):
        try:
            summaries = controller.list_owned(actor)
        except TimeCapsuleError as e:
            _fail(e, json_output)

    if json_output:
        _print_json([s.model_dump(mode="json") for s in summaries])
    else:
        render_summaries(console, summaries, title="My Capsules")


@app.command()
def public(
    actor_id: ActorOption,
    users: UsersOption,
    config: ConfigOption = None,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """List public capsules that are unlocked."""
    with _session(config, db, users, actor_id, json_output) as (controller, actor):
        try:
            summaries = controller.list_public(actor)
        except TimeCapsuleError as e:
            _fail(e, json_output)

    if json_output:
        _print_json([s.model_dump(mode="json") for s in summaries])
    else:
        render_summaries(console, summaries, title="Public Capsules")


@app.command()
def delete(
    capsule_ids: Annotated[list[str], typer.Argument(help="Capsules to delete.")],
    actor_id: ActorOption,
    users: UsersOption,
    config: ConfigOption = None,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """
    Delete one or more capsules.

    Each id is deleted independently; a failure on one does not undo the others.
    Exits with code 1 if any delete was refused.
    """
    results: dict[str, str] = {}
    failed = False
    with _session(config, db, users, actor_id, json_output) as (controller, actor):
        for capsule_id in capsule_ids:
            try:
                results[capsule_id] = controller.delete_capsule(actor, capsule_id).value
            except TimeCapsuleError as e:
                results[capsule_id] = f"error: {e.message}"
                failed = True

    if json_output:
        _print_json(results)
    else:
        for capsule_id, outcome in results.items():
            style = "green" if outcome == "deleted" else "yellow" if outcome == "not_found" else "red"
            console.print(f"[cyan]{escape(capsule_id)}[/cyan] [{style}]{escape(outcome)}[/{style}]")
    if failed:
        raise typer.Exit(code=1)


@app.command()
def report(
    capsule_id: Annotated[str, typer.Argument(help="The capsule to report.")],
    actor_id: ActorOption,
    users: UsersOption,
    reason: Annotated[str, typer.Option("--reason", "-r", help="Why the capsule is reported.")],
    config: ConfigOption = None,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Report a capsule you can read."""
    with _session(config, db, users, actor_id, json_output) as (controller, actor):
        try:
            count = controller.report_capsule(actor, capsule_id, reason)
        except TimeCapsuleError as e:
            _fail(e, json_output)

    if json_output:
        _print_json({"capsule_id": capsule_id, "report_count": count})
    else:
        console.print(f"[yellow]Reported[/yellow] [cyan]{capsule_id}[/cyan] ({count} reports)")


@app.command()
def review(
    capsule_id: Annotated[str, typer.Argument(help="The capsule to mark as reviewed.")],
    actor_id: ActorOption,
    users: UsersOption,
    config: ConfigOption = None,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Mark a capsule as reviewed (moderators only)."""
    with _session(config, db, users, actor_id, json_output) as (controller, actor):
        try:
            summary = controller.review_capsule(actor, capsule_id)
        except TimeCapsuleError as e:
            _fail(e, json_output)

    if json_output:
        _print_json(summary.model_dump(mode="json"))
    else:
        console.print(f"[green]Reviewed[/green] [cyan]{capsule_id}[/cyan]")


@app.command("admin-list")
def admin_list(
    actor_id: ActorOption,
    users: UsersOption,
    filter: Annotated[AdminFilter, typer.Option("--filter", help="all, locked, unlocked or reported.")] = AdminFilter.ALL,
    page: Annotated[int, typer.Option("--page", help="Page number (1-based).")] = 1,
    limit: Annotated[int, typer.Option("--limit", "-n", help="Capsules per page.")] = 10,
    config: ConfigOption = None,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Page through all capsules (moderators only)."""
    with _session(config, db, users, actor_id, json_output) as (controller, actor):
        try:
            result = controller.admin_list_capsules(actor, filter, page=page, limit=limit)
        except TimeCapsuleError as e:
            _fail(e, json_output)

    if json_output:
        _print_json(result.model_dump(mode="json"))
    else:
        render_page(console, result)


@app.command()
def stats(
    actor_id: ActorOption,
    users: UsersOption,
    config: ConfigOption = None,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show moderation statistics (moderators only)."""
    with _session(config, db, users, actor_id, json_output) as (controller, actor):
        try:
            result = controller.admin_stats(actor)
        except TimeCapsuleError as e:
            _fail(e, json_output)

    if json_output:
        _print_json(result.model_dump(mode="json"))
    else:
        render_stats(console, result)


@app.command()
def ban(
    user_id: Annotated[str, typer.Argument(help="The user to ban.")],
    actor_id: ActorOption,
    users: UsersOption,
    config: ConfigOption = None,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Ban a user from new writes (moderators only). Saved to the users file."""
    _change_user(user_id, actor_id, users, config, db, json_output, banned=True)


@app.command()
def unban(
    user_id: Annotated[str, typer.Argument(help="The user to unban.")],
    actor_id: ActorOption,
    users: UsersOption,
    config: ConfigOption = None,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Lift a ban (moderators only). Saved to the users file."""
    _change_user(user_id, actor_id, users, config, db, json_output, banned=False)


def _change_user(
    user_id: str,
    actor_id: str,
    users: Path,
    config: Path | None,
    db: Path | None,
    json_output: bool,
    banned: bool,
) -> None:
    with _session(config, db, users, actor_id, json_output) as (controller, actor):
        try:
            if banned:
                user = controller.ban_user(actor, user_id)
            else:
                user = controller.unban_user(actor, user_id)
        except TimeCapsuleError as e:
            _fail(e, json_output)
        save_users(controller.directory, users)

    if json_output:
        _print_json(user.model_dump(mode="json"))
    else:
        verb = "Banned" if banned else "Unbanned"
        console.print(f"[yellow]{verb}[/yellow] [cyan]{escape(user_id)}[/cyan]")


@app.command("delete-user")
def delete_user(
    user_id: Annotated[str, typer.Argument(help="The user to remove.")],
    actor_id: ActorOption,
    users: UsersOption,
    config: ConfigOption = None,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """
    Remove a user and all of their capsules (moderators only).

    The user is also removed from the users file. This cannot be undone.
    """
    with _session(config, db, users, actor_id, json_output) as (controller, actor):
        try:
            result = controller.delete_user(actor, user_id)
        except TimeCapsuleError as e:
            _fail(e, json_output)
        save_users(controller.directory, users)

    if json_output:
        _print_json(result.model_dump(mode="json"))
    else:
        console.print(
            f"[red]Deleted user[/red] [cyan]{escape(user_id)}[/cyan] "
            f"and {result.capsules_deleted} capsules"
        )


@app.command("users")
def list_users(
    actor_id: ActorOption,
    users: UsersOption,
    filter: Annotated[UserFilter, typer.Option("--filter", help="all, active or banned.")] = UserFilter.ALL,
    search: Annotated[str, typer.Option("--search", "-s", help="Match user id or name.")] = "",
    page: Annotated[int, typer.Option("--page", help="Page number (1-based).")] = 1,
    limit: Annotated[int, typer.Option("--limit", "-n", help="Users per page.")] = 10,
    config: ConfigOption = None,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Page through users (moderators only)."""
    with _session(config, db, users, actor_id, json_output) as (controller, actor):
        try:
            result = controller.admin_list_users(actor, filter, page=page, limit=limit, search=search)
        except TimeCapsuleError as e:
            _fail(e, json_output)

    if json_output:
        _print_json(result.model_dump(mode="json"))
    else:
        render_users(console, result)


if __name__ == "__main__":
    app()
