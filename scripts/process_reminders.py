"""
Run one reminder pass without HTTP.

Intended for a system cron entry, e.g. every minute:

    * * * * * cd /srv/dosepush && python -m scripts.process_reminders
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime
from typing import Optional

from dateutil import parser as dateutil_parser

from dosepush.config.settings import get_settings
from dosepush.domain.results import ResolveScope
from dosepush.infrastructure.container import Services
from dosepush.infrastructure.database import init_database

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)

logger = logging.getLogger("scripts.process_reminders")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Dispatch due medicine reminders.")
    parser.add_argument("--at", help="Reference time (ISO 8601); naive values use APP_TIMEZONE")
    parser.add_argument("--workspace", type=int, help="Restrict to one workspace")
    parser.add_argument("--user", type=int, help="Restrict to one user (requires --workspace)")
    parser.add_argument("--deadline", type=float, help="Bound on total runtime in seconds")
    return parser


async def run(args: argparse.Namespace, now: Optional[datetime] = None) -> int:
    settings = get_settings()
    services = Services.from_settings(settings)

    scope = ResolveScope(workspace_id=args.workspace, user_id=args.user) if args.workspace else None
    deadline = args.deadline if args.deadline is not None else settings.batch_deadline_seconds

    try:
        await init_database(services.engine)
        result = await services.resolver.resolve_due(now=now, scope=scope, deadline=deadline)
    except Exception as e:
        logger.exception(f"Reminder pass failed: {e}")
        return 1
    finally:
        await services.aclose()

    print(json.dumps({"ok": True, "result": result.model_dump()}))
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    if args.user is not None and args.workspace is None:
        print("--user requires --workspace", file=sys.stderr)
        return 2
    now = None
    if args.at:
        try:
            now = dateutil_parser.isoparse(args.at)
        except ValueError as e:
            print(f"Invalid --at value {args.at!r}: {e}", file=sys.stderr)
            return 2
    return asyncio.run(run(args, now))


if __name__ == "__main__":
    sys.exit(main())
