"""CLI commands for fetching GitHub user profiles."""

import argparse
import json
import logging
import sys
from datetime import datetime


def _parse_date(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid date: {value!r} (expected ISO 8601)") from e


def _parse_identifier(value: str) -> str | int:
    """Digits are GitHub user ids, anything else is a login."""
    return int(value) if value.isdigit() else value


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Fetch GitHub user profiles with contribution counts and top language",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # fetch subcommand
    fetch_parser = subparsers.add_parser(
        "fetch",
        help="Fetch profiles for logins or numeric user ids",
    )
    fetch_parser.add_argument(
        "users",
        nargs="+",
        type=_parse_identifier,
        help="GitHub logins or numeric user ids",
    )
    fetch_parser.add_argument(
        "--from",
        dest="date_from",
        type=_parse_date,
        default=None,
        help="Start of the contribution window (default: one year before --to)",
    )
    fetch_parser.add_argument(
        "--to",
        dest="date_to",
        type=_parse_date,
        default=None,
        help="End of the contribution window (default: now)",
    )
    fetch_parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Users per GraphQL query (default: 10)",
    )
    fetch_parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Maximum batches in flight (default: one per batch)",
    )
    fetch_parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Give up after this many seconds",
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(name)s] %(message)s",
        stream=sys.stderr,
    )

    if args.command == "fetch":
        from .errors import ProfileFetchError
        from .profiles import fetch_user_profiles

        try:
            records = fetch_user_profiles(
                args.users,
                args.date_from,
                args.date_to,
                max_batch_size=args.batch_size,
                max_concurrency=args.concurrency,
                timeout=args.timeout,
            )
        except (ProfileFetchError, RuntimeError, ValueError) as e:
            sys.stderr.write(f"Error: {e}\n")
            return 1

        json.dump([r.to_dict() for r in records], sys.stdout, indent=2)
        sys.stdout.write("\n")
        return 0

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
