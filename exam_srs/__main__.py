"""CLI interface for Exam SRS.

Usage:
    python -m exam_srs review USER ITEM RATING    Rate a question (Again/Hard/Good/Easy or 1-4)
    python -m exam_srs due USER                   List questions due for review
    python -m exam_srs session USER ITEM...       Pick questions to study from candidates
    python -m exam_srs presets USER               List a user's scheduling presets
    python -m exam_srs validate FILE              Check a JSON preset file
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from backend.database import async_session, engine
from backend.models import Base
from backend.srs.errors import ConcurrentModification, InvalidRating
from backend.srs.queue import DueFilters
from backend.srs.scheduling_config import DEFAULT_CONFIG, SchedulerKind, SchedulingConfig, Scope
from backend.srs.service import SchedulingService


def format_interval(days: float) -> str:
    """Human-readable interval label (<10m, 3h, 12d)."""
    minutes = int(days * 1440)
    if minutes < 1:
        return "<1m"
    if minutes < 60:
        return f"{minutes}m"
    if minutes < 1440:
        return f"{minutes // 60}h"
    return f"{int(days)}d"


async def ensure_db() -> None:
    """Create tables if they don't exist."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def cmd_review(args: argparse.Namespace) -> int:
    """Record one rating and print the new schedule."""
    await ensure_db()
    scopes = []
    if args.topic:
        scopes.append(Scope.topic(args.topic))
    if args.subject:
        scopes.append(Scope.subject(args.subject))
    if args.space:
        scopes.append(Scope.space(args.space))

    async with async_session() as db:
        service = SchedulingService.for_session(db)
        try:
            record = await service.record_review(args.user, args.item, args.rating, scopes=scopes)
        except InvalidRating as exc:
            print(f"  {exc}", file=sys.stderr)
            return 2
        except ConcurrentModification as exc:
            print(f"  {exc}; try again", file=sys.stderr)
            return 1

    print(
        f"  {record.item_id}: {record.state}, next in {format_interval(record.interval_days)} "
        f"(ease {record.ease_factor:.2f}, reps {record.repetitions}) at {record.next_review_at:%Y-%m-%d %H:%M}"
    )
    return 0


async def cmd_due(args: argparse.Namespace) -> int:
    """List due questions, oldest first."""
    await ensure_db()
    async with async_session() as db:
        service = SchedulingService.for_session(db)
        queue = service.get_due_items(args.user, filters=DueFilters(limit=args.limit))
        count = 0
        async for record in queue:
            count += 1
            print(f"  {record.item_id:<24} {record.state:<10} due {record.next_review_at:%Y-%m-%d %H:%M}")

    print(f"  {count} items due")
    return 0


async def cmd_session(args: argparse.Namespace) -> int:
    """Show the next study batch drawn from the given questions."""
    await ensure_db()
    async with async_session() as db:
        service = SchedulingService.for_session(db)
        session = await service.build_session(args.user, args.items, limit=args.limit)

    for record in session.due:
        print(f"  {record.item_id:<24} {record.state:<10} due {record.next_review_at:%Y-%m-%d %H:%M}")
    for record in session.new:
        print(f"  {record.item_id:<24} new")
    print(f"  {session.due_count} due, {session.new_count} new, {session.total} total")
    return 0


async def cmd_presets(args: argparse.Namespace) -> int:
    """List the user's presets."""
    await ensure_db()
    async with async_session() as db:
        presets = await SchedulingService.for_session(db).list_presets(args.user)

    if not presets:
        print("  No presets; the built-in defaults apply.")
    for preset in presets:
        flags = " ".join(f for f, on in (("default", preset.is_default), ("global", preset.is_global)) if on)
        print(
            f"  #{preset.id} {preset.name} [{preset.algorithm}] retention {preset.request_retention:.2f} "
            f"steps {preset.learning_steps}/{preset.relearning_steps} {flags}".rstrip()
        )
    return 0


def load_config(path: Path) -> SchedulingConfig:
    """Read a preset JSON file; missing keys take the built-in defaults."""
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError("expected a JSON object of preset fields")
    return SchedulingConfig(
        weights=tuple(data.get("weights", DEFAULT_CONFIG.weights)),
        request_retention=data.get("request_retention", DEFAULT_CONFIG.request_retention),
        maximum_interval=data.get("maximum_interval", DEFAULT_CONFIG.maximum_interval),
        enable_fuzz=data.get("enable_fuzz", DEFAULT_CONFIG.enable_fuzz),
        enable_short_term=data.get("enable_short_term", DEFAULT_CONFIG.enable_short_term),
        learning_steps=tuple(data.get("learning_steps", DEFAULT_CONFIG.learning_steps)),
        relearning_steps=tuple(data.get("relearning_steps", DEFAULT_CONFIG.relearning_steps)),
        graduating_interval=data.get("graduating_interval", DEFAULT_CONFIG.graduating_interval),
        easy_interval=data.get("easy_interval", DEFAULT_CONFIG.easy_interval),
        algorithm=SchedulerKind(data.get("algorithm", DEFAULT_CONFIG.algorithm.value)),
    )


def cmd_validate(args: argparse.Namespace) -> int:
    """Validate a preset file (sync, no DB needed)."""
    try:
        config = load_config(Path(args.file))
    except OSError as exc:
        print(f"  Cannot read {args.file}: {exc.strerror}", file=sys.stderr)
        return 2
    except (ValueError, TypeError) as exc:
        # json.JSONDecodeError is a ValueError, as is an unknown algorithm name
        print(f"  Malformed preset file {args.file}: {exc}", file=sys.stderr)
        return 2
    result = config.validate()
    if result.ok:
        print("  Preset is valid")
        return 0
    for message in result.messages():
        print(f"  {message}", file=sys.stderr)
    return 1


def main(argv: list[str] | None = None) -> int:
    """Entry point for the Exam SRS CLI application."""
    parser = argparse.ArgumentParser(
        prog="exam_srs",
        description="Exam SRS spaced repetition scheduler",
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # review
    review_parser = subparsers.add_parser("review", help="Rate a question")
    review_parser.add_argument("user", help="User ID")
    review_parser.add_argument("item", help="Question ID")
    review_parser.add_argument("rating", help="Again, Hard, Good, Easy (or 1-4)")
    review_parser.add_argument("--topic", help="Topic ID, for preset lookup")
    review_parser.add_argument("--subject", help="Subject ID, for preset lookup")
    review_parser.add_argument("--space", help="Space ID, for preset lookup")

    # due
    due_parser = subparsers.add_parser("due", help="List questions due for review")
    due_parser.add_argument("user", help="User ID")
    due_parser.add_argument("--limit", type=int, default=20, help="Max items to list")

    # session
    session_parser = subparsers.add_parser("session", help="Pick questions to study")
    session_parser.add_argument("user", help="User ID")
    session_parser.add_argument("items", nargs="+", help="Candidate question IDs")
    session_parser.add_argument("--limit", type=int, default=None, help="Max questions in the batch")

    # presets
    presets_parser = subparsers.add_parser("presets", help="List scheduling presets")
    presets_parser.add_argument("user", help="User ID")

    # validate
    validate_parser = subparsers.add_parser("validate", help="Validate a JSON preset file")
    validate_parser.add_argument("file", help="Path to the preset JSON")

    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG)

    if not args.command:
        parser.print_help()
        return 0

    # validate is synchronous, all others are async.
    if args.command == "validate":
        return cmd_validate(args)

    cmd_map = {
        "review": cmd_review,
        "due": cmd_due,
        "session": cmd_session,
        "presets": cmd_presets,
    }

    return asyncio.run(cmd_map[args.command](args))


if __name__ == "__main__":
    sys.exit(main())
