# pylint: disable=import-outside-toplevel
"""Main entry point for the runledger CLI.

This module provides the command-line interface for runledger: bootstrapping
the database, replaying recorded GPX runs through the ledgers, and inspecting
an owner's achievements and streaks.
"""

import argparse
import sys

from dotenv import load_dotenv

load_dotenv()


def main():
    """Main function for the runledger CLI."""
    parser = argparse.ArgumentParser(description="runledger CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser(
        "migrate",
        help="Bootstrap / migrate the database schema (safe to run on every start)",
    )

    replay_parser = subparsers.add_parser("replay", help="Replay a GPX track as a run and finish it")
    replay_parser.add_argument("file", type=str, help="Path to a .gpx file")
    replay_parser.add_argument("--owner", required=True, help="Owner id the run belongs to")
    replay_parser.add_argument("--session-id", help="Explicit session id (defaults to one derived from the file)")

    achievements_parser = subparsers.add_parser("achievements", help="Show achievement progress for an owner")
    achievements_parser.add_argument("--owner", required=True, help="Owner id")

    status_parser = subparsers.add_parser("status", help="Show totals, streak and today's goal for an owner")
    status_parser.add_argument("--owner", required=True, help="Owner id")

    subparsers.add_parser("help", help="Show usage and documentation")

    args = parser.parse_args()

    if args.command == "migrate":
        from runledger.commands.migrate import run

        run()
    elif args.command == "replay":
        from runledger.commands.replay import run

        sys.exit(run(args.file, args.owner, args.session_id))
    elif args.command == "achievements":
        from runledger.commands.achievements import run

        run(args.owner)
    elif args.command == "status":
        from runledger.commands.status import run

        run(args.owner)
    elif args.command == "help" or args.command is None:
        print(
            """
runledger - Track runs and keep streak, daily-goal and achievement ledgers.

Usage:
    python -m runledger <command>

Commands:
    migrate        Bootstrap / migrate the database schema
    replay FILE    Replay a GPX track as a run (--owner ID required)
    achievements   Show achievement progress (--owner ID required)
    status         Show totals, streak and today's goal (--owner ID required)
    help           Show this help and usage documentation

Setup:
    1. Optionally set DATABASE_URL (PostgreSQL) or METADATA_DB (SQLite path) in .env
    2. Run 'python -m runledger migrate'
    3. Use 'python -m runledger replay track.gpx --owner me' to record a run.

See README.md for more details.
"""
        )
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
