"""CI action entry point (see action.yml).

Inputs arrive as ``INPUT_<NAME>`` environment variables, outputs are appended
to the file named by ``GITHUB_OUTPUT``, and failures are reported with an
``::error::`` workflow command plus a non-zero exit status.

Usage:
    INPUT_TRUENAS_URL=... INPUT_API_KEY=... INPUT_APP_NAME=... INPUT_ACTION=restart \\
        python -m src.action
"""

import asyncio
import logging
import os
import sys

from pydantic import ValidationError

from src.config import get_settings
from src.truenas.errors import ConfigurationError, TruenasError
from src.truenas.models import Action, ConnectionConfig, build_connection_config, parse_action, validate_app_name
from src.truenas.runner import run_action

logger = logging.getLogger(__name__)


def get_input(name: str, required: bool = False) -> str:
    """Read an action input the way the runner exports it (``INPUT_APP_NAME`` for ``app-name``)."""
    value = os.environ.get(f"INPUT_{name.replace(' ', '_').replace('-', '_').upper()}", "").strip()
    if required and not value:
        raise ConfigurationError(f"Input required and not supplied: {name}")
    return value


def set_output(name: str, value: str) -> None:
    """Append ``name=value`` to the step output file."""
    output_path = os.environ.get("GITHUB_OUTPUT", "")
    if not output_path:
        logger.warning("GITHUB_OUTPUT is not set; output %s=%s not recorded", name, value)
        return
    with open(output_path, "a", encoding="utf-8") as f:
        _ = f.write(f"{name}={value}\n")


def set_failed(message: str) -> None:
    print(f"::error::{message}")


def read_inputs() -> tuple[ConnectionConfig, Action, str]:
    """Read and validate every input before any network I/O."""
    truenas_url = get_input("truenas-url", required=True)
    api_key = get_input("api-key", required=True)
    app_name = validate_app_name(get_input("app-name", required=True))
    action = parse_action(get_input("action", required=True))
    disable_ssl_verify = get_input("disable-ssl-verify").lower() == "true"

    settings = get_settings()
    config = build_connection_config(
        truenas_url,
        api_key,
        verify_ssl=not disable_ssl_verify,
        ca_cert=settings.truenas_ca_cert,
        connect_timeout=settings.truenas_connect_timeout_seconds,
        call_timeout=settings.truenas_call_timeout_seconds,
    )
    return config, action, app_name


async def run() -> bool:
    """Run the action and record outputs. Returns True on success."""
    try:
        config, action, app_name = read_inputs()
        print(f"Starting TrueNAS app {action.value} for: {app_name}")
        print(f"Connecting to: {config.url}")
        settings = get_settings()
        status = await run_action(
            config,
            action,
            app_name,
            job_timeout=settings.truenas_job_timeout_seconds,
            poll_interval=settings.truenas_job_poll_interval_seconds,
        )
    except (TruenasError, ValidationError) as e:
        set_output("app-status", "unknown")
        set_output("success", "false")
        set_failed(f"Action failed: {e}")
        return False

    if action in (Action.STATUS, Action.RESTART):
        print(f"App status: {status or 'unknown'}")
    print("Action completed successfully")
    set_output("app-status", status or "unknown")
    set_output("success", "true")
    return True


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
    if not asyncio.run(run()):
        sys.exit(1)


if __name__ == "__main__":
    main()
