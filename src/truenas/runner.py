"""Run one app action over one short-lived connection."""

import logging

from src.truenas.apps import AppManager
from src.truenas.client import ChannelFactory, TruenasClient
from src.truenas.models import Action, ConnectionConfig

logger = logging.getLogger(__name__)


async def run_action(
    config: ConnectionConfig,
    action: Action,
    app_name: str,
    job_timeout: float,
    poll_interval: float,
    channel_factory: ChannelFactory | None = None,
) -> str | None:
    """Connect, perform ``action`` on ``app_name``, disconnect.

    Returns the app status for ``status`` and ``restart`` and None for
    ``stop``/``start``. Errors propagate after the connection is closed.
    """
    async with TruenasClient(config, channel_factory=channel_factory) as client:
        apps = AppManager(client, job_timeout=job_timeout, poll_interval=poll_interval)
        match action:
            case Action.STATUS:
                return await apps.get_app_status(app_name)
            case Action.STOP:
                _ = await apps.stop_app(app_name)
                logger.info("App '%s' stopped", app_name)
                return None
            case Action.START:
                _ = await apps.start_app(app_name)
                logger.info("App '%s' started", app_name)
                return None
            case Action.RESTART:
                return await apps.restart_app(app_name)
