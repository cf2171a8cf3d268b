# =============================================================================
# src/cli/recommend.py -- Recommendation CLI
# =============================================================================
#
# Runs the hybrid engine against a local SQLite database without any
# server in front of it.  Each subcommand maps onto one engine entry point:
#
#   recommend     get_recommendations / get_contextual_recommendations
#   radio         get_song_radio (one seed song)
#   continue      get_playlist_continuation (last five songs seed)
#   daily-mixes   refresh_daily_mixes (--force regenerates)
#   interact      RealTimeLearningService.process_interaction
#   load-catalog  bulk-load a JSON catalog into the database
#
# Output is a plain-text table by default or JSON with --json.  Logs go to
# stderr, so stdout stays parseable.  The real-time cache lives only for
# the duration of one invocation.
# =============================================================================

"""Command-line access to the recommendation engine.

Usage::

    python -m src.cli.recommend load-catalog catalog.json
    python -m src.cli.recommend recommend 42 --limit 10 --activity WORKING
    python -m src.cli.recommend radio 42 1001 --json
    python -m src.cli.recommend continue 42 1001 1002 1003
    python -m src.cli.recommend daily-mixes 42 --force
    python -m src.cli.recommend interact 42 1001 LIKED
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

from src.models.interaction import InteractionContext, InteractionType, MusicInteraction
from src.models.recommendation import (
    DailyMixRefresh,
    Mood,
    RecommendationContext,
    RecommendationRequest,
    RecommendationResult,
    UserActivityContext,
)
from src.utils.errors import RecommendationError


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def _format_result_text(result: RecommendationResult) -> str:
    lines = [
        f"{'#':>3}  {'song':>8}  {'score':>7}  reason",
        "-" * 44,
    ]
    for rank, rec in enumerate(result.recommendations, start=1):
        lines.append(f"{rank:>3}  {rec.song_id:>8}  {rec.score:>7.3f}  {rec.reason.value}")
    if not result.recommendations:
        lines.append("  (no recommendations)")
    lines.append("")
    lines.append(
        f"strategies: {', '.join(result.strategies) or '-'}  "
        f"time: {result.execution_time_ms} ms  cache hit: {result.cache_hit}"
    )
    return "\n".join(lines)


def _format_mixes_text(refresh: DailyMixRefresh) -> str:
    lines = [f"Daily Mixes ({refresh.generated} generated, {refresh.cached} cached)", "=" * 40]
    for mix in refresh.mixes:
        lines.append(f"{mix.name}  [{mix.id}]")
        lines.append(f"  {mix.description}")
        lines.append(f"  {len(mix.song_ids)} songs, expires {mix.expires_at:%Y-%m-%d %H:%M}")
    if not refresh.mixes:
        lines.append("  (no mixes: not enough listening data)")
    return "\n".join(lines)


def _emit(payload: Any, text: str, json_output: bool) -> None:
    if json_output:
        print(json.dumps(payload, indent=2, default=str))
    else:
        print(text)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


async def _handle_recommend(args: argparse.Namespace, services: dict[str, Any]) -> int:
    engine = services["engine"]
    context = None
    if args.activity or args.mood:
        context = RecommendationContext.now(
            activity=UserActivityContext(args.activity) if args.activity else None,
            mood=Mood(args.mood) if args.mood else None,
        )
    request = RecommendationRequest(
        user_id=args.user_id,
        limit=args.limit,
        context=context,
        seed_genres=args.genre or None,
        exclude_song_ids=frozenset(args.exclude or ()),
        diversity_factor=args.diversity,
        popularity_bias=args.popularity_bias,
    )
    result = await engine.get_recommendations(request)
    _emit(result.model_dump(mode="json"), _format_result_text(result), args.json_output)
    return 0


async def _handle_radio(args: argparse.Namespace, services: dict[str, Any]) -> int:
    result = await services["engine"].get_song_radio(args.user_id, args.song_id, limit=args.limit)
    _emit(result.model_dump(mode="json"), _format_result_text(result), args.json_output)
    return 0


async def _handle_continue(args: argparse.Namespace, services: dict[str, Any]) -> int:
    result = await services["engine"].get_playlist_continuation(
        args.user_id, args.song_ids, limit=args.limit
    )
    _emit(result.model_dump(mode="json"), _format_result_text(result), args.json_output)
    return 0


async def _handle_daily_mixes(args: argparse.Namespace, services: dict[str, Any]) -> int:
    refresh = await services["engine"].refresh_daily_mixes(
        args.user_id, force_refresh=args.force
    )
    _emit(refresh.model_dump(mode="json"), _format_mixes_text(refresh), args.json_output)
    return 0


async def _handle_interact(args: argparse.Namespace, services: dict[str, Any]) -> int:
    context = None
    if args.activity:
        context = InteractionContext(
            session_id="cli", activity=UserActivityContext(args.activity)
        )
    interaction = MusicInteraction(
        user_id=args.user_id,
        song_id=args.song_id,
        type=InteractionType(args.interaction_type),
        context=context,
    )
    await services["learning_service"].process_interaction(interaction)
    stats = await services["realtime_cache"].get_cache_stats()
    _emit(
        {"processed": interaction.model_dump(mode="json"), "cache": stats.model_dump()},
        f"Processed {interaction.type.value} for song {interaction.song_id}",
        args.json_output,
    )
    return 0


async def _handle_load_catalog(args: argparse.Namespace, services: dict[str, Any]) -> int:
    path = Path(args.path)
    if not path.exists():
        print(f"Error: File not found: {path}", file=sys.stderr)
        return 1
    payload = json.loads(path.read_text(encoding="utf-8"))
    counts = await services["repository"].import_catalog(payload)
    text = "\n".join(f"  {name:<18} {count}" for name, count in counts.items())
    _emit(counts, f"Loaded {path.name}:\n{text}", args.json_output)
    return 0


_HANDLERS = {
    "recommend": _handle_recommend,
    "radio": _handle_radio,
    "continue": _handle_continue,
    "daily-mixes": _handle_daily_mixes,
    "interact": _handle_interact,
    "load-catalog": _handle_load_catalog,
}


async def _run(args: argparse.Namespace, config: dict[str, Any]) -> int:
    # Deferred so logging is configured before module-level loggers are cached.
    from src.main import build_all

    services = build_all(config)
    await services["repository"].initialize()
    try:
        return await _HANDLERS[args.command](args, services)
    except RecommendationError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        close = getattr(services["cache_provider"], "close", None)
        if close is not None:
            await close()


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the recommendation CLI."""
    parser = argparse.ArgumentParser(
        prog="python -m src.cli.recommend",
        description="Query the hybrid song recommendation engine.",
    )
    parser.add_argument("--db", help="SQLite database path (overrides DB_PATH)")
    parser.add_argument("--config", default="config/config.yaml", help="YAML config file")
    parser.add_argument("--json", action="store_true", dest="json_output", help="Emit JSON")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log at DEBUG level")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    activities = [a.value for a in UserActivityContext]
    moods = [m.value for m in Mood]

    # -- recommend --
    rec_parser = subparsers.add_parser("recommend", help="Personalised recommendations")
    rec_parser.add_argument("user_id", type=int)
    rec_parser.add_argument("--limit", type=int, default=20)
    rec_parser.add_argument("--activity", choices=activities)
    rec_parser.add_argument("--mood", choices=moods)
    rec_parser.add_argument("--genre", action="append", help="Seed genre (repeatable)")
    rec_parser.add_argument("--exclude", type=int, action="append", help="Song ID to exclude")
    rec_parser.add_argument("--diversity", type=float, default=0.3)
    rec_parser.add_argument(
        "--popularity-bias", type=float, default=0.5, dest="popularity_bias"
    )

    # -- radio --
    radio_parser = subparsers.add_parser("radio", help="Song radio from one seed song")
    radio_parser.add_argument("user_id", type=int)
    radio_parser.add_argument("song_id", type=int)
    radio_parser.add_argument("--limit", type=int, default=50)

    # -- continue --
    cont_parser = subparsers.add_parser("continue", help="Continue a playlist")
    cont_parser.add_argument("user_id", type=int)
    cont_parser.add_argument("song_ids", type=int, nargs="+")
    cont_parser.add_argument("--limit", type=int, default=10)

    # -- daily-mixes --
    mix_parser = subparsers.add_parser("daily-mixes", help="Show or regenerate Daily Mixes")
    mix_parser.add_argument("user_id", type=int)
    mix_parser.add_argument("--force", action="store_true", help="Regenerate even if fresh")

    # -- interact --
    int_parser = subparsers.add_parser("interact", help="Feed one interaction to the learner")
    int_parser.add_argument("user_id", type=int)
    int_parser.add_argument("song_id", type=int)
    int_parser.add_argument("interaction_type", choices=[t.value for t in InteractionType])
    int_parser.add_argument("--activity", choices=activities)

    # -- load-catalog --
    load_parser = subparsers.add_parser("load-catalog", help="Import a JSON catalog")
    load_parser.add_argument("path")

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point.

    Resolves configuration (YAML, then environment), applies ``--db``,
    configures logging to stderr and dispatches to the subcommand handler.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    from src.config.loader import load_config
    from src.utils.logging import configure_logging

    try:
        config = load_config(args.config)
    except RecommendationError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    if args.db:
        config["storage"]["db_path"] = args.db

    if args.verbose:
        level = "DEBUG"
    else:
        level = "WARNING" if args.json_output else config["logging"]["level"]
    configure_logging(log_level=level, json_output=config["app"]["env"] == "production")

    exit_code = asyncio.run(_run(args, config))
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
