"""Command-line control of a TrueNAS SCALE app.

Usage:
    export TRUENAS_URL="https://truenas.local"
    export TRUENAS_API_KEY="your-api-key"
    uv run python -m src.cli status <app_name>
    uv run python -m src.cli restart <app_name> --no-ssl-verify
"""

import argparse
import asyncio
import logging
import sys

from pydantic import ValidationError

from src.config import get_settings
from src.truenas.errors import TruenasError
from src.truenas.models import Action, build_connection_config, parse_action, validate_app_name
from src.truenas.runner import run_action

EPILOG = """\
commands:
  status <app_name>    Check app status
  stop <app_name>      Stop an app
  start <app_name>     Start an app
  restart <app_name>   Restart an app (stop then start)

environment:
  TRUENAS_URL          e.g. https://truenas.local
  TRUENAS_API_KEY      TrueNAS API key
"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="truenas-app",
        description="Start, stop, restart or query a TrueNAS SCALE app",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("command", choices=[a.value for a in Action], type=str.lower, help="Action to perform")
    parser.add_argument("app_name", help="Name of the TrueNAS app")
    parser.add_argument(
        "--no-ssl-verify",
        action="store_true",
        help="Skip TLS certificate verification (self-signed certificates)",
    )
    parser.add_argument("--timeout", type=float, default=None, help="Seconds to wait for stop/start jobs")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log progress to stderr")
    return parser


def _missing_env_message(url: str, api_key: str) -> str:
    lines = ["Error: Required environment variables are missing"]
    if not url:
        lines.append("  TRUENAS_URL is required")
        lines.append('  Set it with: export TRUENAS_URL="https://truenas.local"')
    if not api_key:
        lines.append("  TRUENAS_API_KEY is required")
        lines.append('  Set it with: export TRUENAS_API_KEY="your-api-key"')
    return "\n".join(lines)


def main(argv: list[str] | None = None) -> None:
    """Parse args, run one action, and exit non-zero on any failure."""
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        sys.exit(1)

    logging.basicConfig(
        level=logging.INFO if args.verbose else settings.log_level.upper(),
        format="%(levelname)s: %(message)s",
    )

    if not settings.truenas_url or not settings.truenas_api_key:
        print(_missing_env_message(settings.truenas_url, settings.truenas_api_key), file=sys.stderr)
        parser.print_usage(sys.stderr)
        sys.exit(1)

    try:
        action = parse_action(args.command)
        app_name = validate_app_name(args.app_name)
        config = build_connection_config(
            settings.truenas_url,
            settings.truenas_api_key,
            verify_ssl=settings.truenas_verify_ssl and not args.no_ssl_verify,
            ca_cert=settings.truenas_ca_cert,
            connect_timeout=settings.truenas_connect_timeout_seconds,
            call_timeout=settings.truenas_call_timeout_seconds,
        )
        job_timeout = args.timeout if args.timeout is not None else settings.truenas_job_timeout_seconds
        print(f"Connecting to TrueNAS at {config.url}...")
        status = asyncio.run(
            run_action(
                config,
                action,
                app_name,
                job_timeout=job_timeout,
                poll_interval=settings.truenas_job_poll_interval_seconds,
            )
        )
    except TruenasError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    match action:
        case Action.STATUS:
            print(f"App status: {status or 'unknown'}")
        case Action.RESTART:
            print(f"App '{app_name}' restarted. Final status: {status or 'unknown'}")
        case _:
            print(f"App '{app_name}' {action.value} completed")


if __name__ == "__main__":
    main()
