"""Main CLI application.

Click commands for the planpoker session engine: serve, sessions,
create, show, join, add-story, start, vote, stats, complete, reset,
analytics.
"""

from __future__ import annotations

import asyncio
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click

from planpoker import __version__
from planpoker.config.loader import load_config
from planpoker.core.errors import (
    ConfigError,
    NotFoundError,
    PlanPokerError,
    ValidationError,
)
from planpoker.logging_setup import configure_logging

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Coroutine

    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

    from planpoker.cli.display import PokerDisplay
    from planpoker.config.schema import PlanPokerConfig
    from planpoker.service import PokerService
    from planpoker.store.models import PlanningSession


# ── Helpers ──────────────────────────────────────────────────────


def _error(msg: str) -> None:
    """Print an error message to stderr and exit."""
    click.echo(f"Error: {msg}", err=True)
    sys.exit(1)


def _load_config(config_path: str | None) -> PlanPokerConfig:
    """Load config and apply its logging section."""
    try:
        config = load_config(path=config_path)
    except ConfigError as e:
        _error(str(e))
        raise  # unreachable, keeps mypy happy
    configure_logging(config.logging)
    return config


async def _create_db(
    config: PlanPokerConfig,
) -> tuple[async_sessionmaker[AsyncSession], AsyncEngine]:
    """Create async engine and sessionmaker from config."""
    from sqlalchemy import event
    from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

    from planpoker.store.models import Base

    url = config.database.url
    if "~" in url:
        url = url.replace("~", str(Path.home()))

    is_sqlite = url.startswith("sqlite")
    is_memory = is_sqlite and (":memory:" in url or url.rstrip("/").endswith(":"))

    if is_sqlite and not is_memory:
        db_path = url.split("///")[-1] if "///" in url else ""
        if db_path:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    engine_kwargs: dict[str, object] = {}
    if is_memory:
        # One shared connection, otherwise every checkout sees a fresh database.
        from sqlalchemy.pool import StaticPool

        engine_kwargs["poolclass"] = StaticPool
        engine_kwargs["connect_args"] = {"check_same_thread": False}
    elif is_sqlite:
        from sqlalchemy.pool import NullPool

        engine_kwargs["poolclass"] = NullPool
    else:
        engine_kwargs["pool_size"] = config.database.pool_size
        engine_kwargs["max_overflow"] = config.database.max_overflow
        engine_kwargs["pool_timeout"] = config.database.pool_timeout
        engine_kwargs["pool_recycle"] = config.database.pool_recycle
        engine_kwargs["pool_pre_ping"] = True

    engine = create_async_engine(url, **engine_kwargs)

    if is_sqlite:

        @event.listens_for(engine.sync_engine, "connect")
        def _enable_fks(dbapi_conn, connection_record):  # type: ignore[no-untyped-def]
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        # Other backends are managed by alembic migrations.
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False)
    return factory, engine


@asynccontextmanager
async def _service(config: PlanPokerConfig) -> AsyncIterator[PokerService]:
    """A PokerService over a fresh engine, disposed on exit."""
    from planpoker.service import PokerService
    from planpoker.store.repository import Repositories

    factory, engine = await _create_db(config)
    try:
        async with factory() as session:
            yield PokerService(Repositories(session), config)
    finally:
        await engine.dispose()


def _display() -> PokerDisplay:
    from planpoker.cli.display import PokerDisplay

    return PokerDisplay()


def _require_user(ctx: click.Context) -> str:
    user: str | None = ctx.obj.get("user")
    if not user:
        msg = "A user is required (--user or PLANPOKER_USER)"
        raise ValidationError(msg)
    return user


async def _find_session(svc: PokerService, ref: str) -> PlanningSession | None:
    """Look a session up by its id or its six-character join code."""
    from planpoker.engine.session import validate_session_code

    code = ref.strip().upper()
    if validate_session_code(code):
        by_code = await svc.find_session_by_code(code)
        if by_code is not None:
            return by_code
    return await svc.get_session(ref)


def _run(coro: Coroutine[Any, Any, None]) -> None:
    """Run a command coroutine, turning planpoker errors into exit 1."""
    try:
        asyncio.run(coro)
    except PlanPokerError as e:
        _error(str(e))


# ── CLI group ────────────────────────────────────────────────────


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name="planpoker")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True),
    default=None,
    help="Path to config file.",
)
@click.option(
    "--user",
    envvar="PLANPOKER_USER",
    default=None,
    help="Acting user id (defaults to $PLANPOKER_USER).",
)
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, user: str | None) -> None:
    """planpoker - Planning poker estimation sessions.

    Create a session, share its code, vote on stories.
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["user"] = user
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


# ── serve ────────────────────────────────────────────────────────


@cli.command()
@click.option("--host", default=None, help="Bind address (default from config).")
@click.option("--port", type=int, default=None, help="Port (default from config).")
@click.option("--reload", is_flag=True, default=False, help="Auto-reload on changes.")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None, reload: bool) -> None:
    """Start the REST API server."""
    import uvicorn

    from planpoker.api.app import create_app

    config = _load_config(ctx.obj["config_path"])
    app = create_app(config)
    uvicorn.run(
        app,
        host=host or config.api.host,
        port=port or config.api.port,
        reload=reload,
    )


# ── sessions ─────────────────────────────────────────────────────


@cli.command()
@click.option(
    "--status",
    type=click.Choice(["pending", "active", "completed", "cancelled"]),
    default=None,
    help="Filter by status.",
)
@click.option("--limit", type=int, default=None, help="Max results.")
@click.pass_context
def sessions(ctx: click.Context, status: str | None, limit: int | None) -> None:
    """List planning sessions, newest first."""
    config = _load_config(ctx.obj["config_path"])
    _run(_sessions_async(config, status, limit))


async def _sessions_async(
    config: PlanPokerConfig, status: str | None, limit: int | None
) -> None:
    async with _service(config) as svc:
        rows = await svc.list_sessions(limit=limit, status=status)
    _display().show_sessions(rows)


# ── create ───────────────────────────────────────────────────────


@cli.command()
@click.argument("name")
@click.option("--description", default=None, help="Session description.")
@click.option("--code", "session_code", default=None, help="Explicit join code.")
@click.option("--timebox", type=int, default=None, help="Timebox in minutes.")
@click.option("--dealer", default=None, help="Dealer (defaults to --user).")
@click.option("--start", is_flag=True, default=False, help="Activate immediately.")
@click.pass_context
def create(
    ctx: click.Context,
    name: str,
    description: str | None,
    session_code: str | None,
    timebox: int | None,
    dealer: str | None,
    start: bool,
) -> None:
    """Create a planning session and print its join code."""
    config = _load_config(ctx.obj["config_path"])
    _run(
        _create_async(
            config,
            name,
            description=description,
            session_code=session_code,
            timebox=timebox,
            dealer=dealer,
            status="active" if start else None,
            user=ctx.obj["user"],
        )
    )


async def _create_async(
    config: PlanPokerConfig,
    name: str,
    *,
    description: str | None,
    session_code: str | None,
    timebox: int | None,
    dealer: str | None,
    status: str | None,
    user: str | None,
) -> None:
    async with _service(config) as svc:
        session = await svc.create_session(
            name,
            description=description,
            session_code=session_code,
            dealer=dealer,
            timebox_minutes=timebox,
            status=status,
            acting_user=user,
        )
    click.echo(f"Created session {session.id} [{session.status}]")
    click.echo(f"Join code: {session.session_code}")


# ── show ─────────────────────────────────────────────────────────


@cli.command()
@click.argument("session_ref")
@click.pass_context
def show(ctx: click.Context, session_ref: str) -> None:
    """Show a session and its stories.

    SESSION_REF is the session id or its join code.
    """
    config = _load_config(ctx.obj["config_path"])
    _run(_show_async(config, session_ref))


async def _show_async(config: PlanPokerConfig, session_ref: str) -> None:
    async with _service(config) as svc:
        session = await _find_session(svc, session_ref)
        if session is None:
            raise NotFoundError("session", session_ref)
        stories = await svc.list_stories(session.id)
    _display().show_session(session, stories)


# ── join ─────────────────────────────────────────────────────────


@cli.command()
@click.argument("session_code")
@click.option(
    "--role",
    type=click.Choice(["participant", "observer", "dealer"]),
    default="participant",
    help="Participant role.",
)
@click.pass_context
def join(ctx: click.Context, session_code: str, role: str) -> None:
    """Join a session by its six-character code."""
    config = _load_config(ctx.obj["config_path"])
    _run(_join_async(ctx, config, session_code, role))


async def _join_async(
    ctx: click.Context, config: PlanPokerConfig, session_code: str, role: str
) -> None:
    user = _require_user(ctx)
    async with _service(config) as svc:
        session = await svc.join_session(session_code, user, role=role)
    if session is None:
        raise NotFoundError("session code", session_code.strip().upper())
    click.echo(f"{user} joined {session.name} ({session.id})")


# ── add-story ────────────────────────────────────────────────────


@cli.command("add-story")
@click.argument("session_id")
@click.argument("title")
@click.option("--description", default=None, help="Story description.")
@click.option("--order", type=int, default=None, help="Explicit sequence order.")
@click.pass_context
def add_story(
    ctx: click.Context,
    session_id: str,
    title: str,
    description: str | None,
    order: int | None,
) -> None:
    """Append a story to a session."""
    config = _load_config(ctx.obj["config_path"])
    _run(_add_story_async(config, session_id, title, description, order))


async def _add_story_async(
    config: PlanPokerConfig,
    session_id: str,
    title: str,
    description: str | None,
    order: int | None,
) -> None:
    async with _service(config) as svc:
        story = await svc.add_story(
            session_id, title, description=description, sequence_order=order
        )
    click.echo(f"Added story {story.id} (#{story.sequence_order})")


# ── story lifecycle ──────────────────────────────────────────────


@cli.command()
@click.argument("story_id")
@click.pass_context
def start(ctx: click.Context, story_id: str) -> None:
    """Open voting on a story."""
    config = _load_config(ctx.obj["config_path"])
    _run(_start_async(config, story_id))


async def _start_async(config: PlanPokerConfig, story_id: str) -> None:
    async with _service(config) as svc:
        story = await svc.start_voting(story_id)
    click.echo(f"Voting open on {story.title} [{story.status}]")


@cli.command()
@click.argument("session_id")
@click.argument("story_id")
@click.argument("value")
@click.pass_context
def vote(ctx: click.Context, session_id: str, story_id: str, value: str) -> None:
    """Cast (or change) a vote on a story."""
    config = _load_config(ctx.obj["config_path"])
    _run(_vote_async(ctx, config, session_id, story_id, value))


async def _vote_async(
    ctx: click.Context,
    config: PlanPokerConfig,
    session_id: str,
    story_id: str,
    value: str,
) -> None:
    voter = _require_user(ctx)
    async with _service(config) as svc:
        result = await svc.cast_vote(session_id, story_id, voter, value)
    click.echo(f"Vote recorded: {result.vote_value} (version {result.version})")
    if result.revealed:
        click.echo("Everyone has voted, cards revealed.")


@cli.command()
@click.argument("story_id")
@click.pass_context
def stats(ctx: click.Context, story_id: str) -> None:
    """Show vote statistics for a story."""
    config = _load_config(ctx.obj["config_path"])
    _run(_stats_async(config, story_id))


async def _stats_async(config: PlanPokerConfig, story_id: str) -> None:
    async with _service(config) as svc:
        story = await svc.get_story(story_id)
        if story is None:
            raise NotFoundError("story", story_id)
        result = await svc.get_vote_stats(story_id)
    _display().show_stats(story.title, result)


@cli.command()
@click.argument("story_id")
@click.argument("estimate")
@click.option("--summary", default=None, help="Override the vote summary.")
@click.pass_context
def complete(
    ctx: click.Context, story_id: str, estimate: str, summary: str | None
) -> None:
    """Record the final estimate for a story."""
    config = _load_config(ctx.obj["config_path"])
    _run(_complete_async(config, story_id, estimate, summary))


async def _complete_async(
    config: PlanPokerConfig, story_id: str, estimate: str, summary: str | None
) -> None:
    async with _service(config) as svc:
        story = await svc.complete_voting(story_id, estimate, summary)
    click.echo(f"Completed {story.title}: {story.final_estimate}")


@cli.command()
@click.argument("story_id")
@click.pass_context
def reset(ctx: click.Context, story_id: str) -> None:
    """Clear all votes on a story and return it to pending."""
    config = _load_config(ctx.obj["config_path"])
    _run(_reset_async(config, story_id))


async def _reset_async(config: PlanPokerConfig, story_id: str) -> None:
    async with _service(config) as svc:
        story = await svc.reset_story(story_id)
    click.echo(f"Reset {story.title} [{story.status}]")


# ── analytics ────────────────────────────────────────────────────


@cli.command()
@click.option(
    "--range",
    "time_range",
    type=click.Choice(["7d", "30d", "90d", "all"]),
    default="30d",
    show_default=True,
    help="Window of session creation dates.",
)
@click.pass_context
def analytics(ctx: click.Context, time_range: str) -> None:
    """Show estimation metrics and velocity per session."""
    config = _load_config(ctx.obj["config_path"])
    _run(_analytics_async(config, time_range))


async def _analytics_async(config: PlanPokerConfig, time_range: str) -> None:
    async with _service(config) as svc:
        metrics = await svc.session_metrics(time_range)
        points = await svc.velocity(time_range)
    _display().show_analytics(metrics, points)
