"""Command-line client for the sales pipeline.

Usage (from the project root):
    python -m src.salesboost.cli login alice --password secret
    python -m src.salesboost.cli whoami
    python -m src.salesboost.cli stats
    python -m src.salesboost.cli advance 42
    python -m src.salesboost.cli stage 42 closed_won
    python -m src.salesboost.cli logout

Reads API_BASE_URL and AUTH_CACHE_PATH from environment or .env. The auth
cache and session cookie persist between invocations, so a login lasts until
logout or until the cached entry is a day old.
"""

from __future__ import annotations

import argparse
import asyncio
import getpass
import sys

import structlog
from dotenv import load_dotenv

from src.salesboost.auth.service import AuthServiceError
from src.salesboost.core.logging import configure_structlog
from src.salesboost.deals.collection import DealNotFoundError
from src.salesboost.deals.schemas import ALL_STAGES, PipelineStats
from src.salesboost.deals.stage_machine import InvalidStageError
from src.salesboost.deals.store import DealStoreError
from src.salesboost.session import PermissionDeniedError, SalesSession

logger = structlog.get_logger(__name__)


def format_stats(stats: PipelineStats) -> str:
    lines = [
        f"Pipeline value:        {stats.total_value:,.2f}",
        f"Average deal size:     {stats.average_deal_size:,.2f}",
        f"Win rate:              {stats.win_rate:.1f}%",
        f"Closing this month:    {stats.deals_closing_this_month}",
        "",
        f"{'Stage':<16}{'Deals':>6}{'Value':>16}",
    ]
    for stage in ALL_STAGES:
        bucket = stats.stage_stats[stage]
        lines.append(f"{stage.value:<16}{bucket.count:>6}{bucket.value:>16,.2f}")
    return "\n".join(lines)


async def _run(args: argparse.Namespace) -> int:
    session = SalesSession.from_settings()
    try:
        if args.command == "login":
            password = args.password or getpass.getpass("Password: ")
            user = await session.login(args.username, password)
            print(f"Logged in as {user.username} ({user.normalized_role.value})")
            return 0

        if args.command == "logout":
            await session.logout()
            print("Logged out")
            return 0

        user = await session.start()
        if user is None:
            print("Not logged in. Run: python -m src.salesboost.cli login USERNAME", file=sys.stderr)
            return 1

        if args.command == "whoami":
            print(f"{user.name or user.username} <{user.username}> id={user.id} role={user.normalized_role.value}")
            return 0

        if session.pipeline_error:
            print(f"Error: {session.pipeline_error}", file=sys.stderr)
            return 1

        if args.command == "stats":
            print(format_stats(session.stats))
            return 0

        if args.command == "advance":
            deal = await session.advance(args.deal_id)
        else:
            deal = await session.change_stage(args.deal_id, args.stage)
        print(f"Deal {deal.id} moved to {deal.stage.replace('_', ' ')}")
        return 0
    except (
        AuthServiceError,
        DealStoreError,
        DealNotFoundError,
        InvalidStageError,
        PermissionDeniedError,
    ) as exc:
        # KeyError subclasses repr their message; unwrap it.
        message = exc.args[0] if isinstance(exc, KeyError) and exc.args else str(exc)
        logger.debug("cli.command_failed", command=args.command, error_type=type(exc).__name__)
        print(f"Error: {message}", file=sys.stderr)
        return 1
    finally:
        await session.aclose()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="salesboost", description="Sales pipeline client")
    sub = parser.add_subparsers(dest="command", required=True)

    login = sub.add_parser("login", help="Log in and cache the session")
    login.add_argument("username")
    login.add_argument("--password", default=None, help="Prompted for when omitted")

    sub.add_parser("logout", help="Forget the cached session")
    sub.add_parser("whoami", help="Show the current user")
    sub.add_parser("stats", help="Show pipeline statistics")

    advance = sub.add_parser("advance", help="Move a deal to its next stage")
    advance.add_argument("deal_id", type=int)

    stage = sub.add_parser("stage", help="Set a deal's stage")
    stage.add_argument("deal_id", type=int)
    stage.add_argument("stage", choices=[s.value for s in ALL_STAGES])

    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    configure_structlog()
    args = build_parser().parse_args(argv)
    return asyncio.run(_run(args))


if __name__ == "__main__":
    sys.exit(main())
