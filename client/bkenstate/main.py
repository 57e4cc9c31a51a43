"""
bken client state core — entry point for hosts embedding the reconciler.

A host (desktop bridge, browser transport, test harness) builds one
StateSession per connection session, feeds it event mappings and issues
user actions through ``session.gateway``.
"""

import logging
from collections.abc import Callable

from bkenstate.config import settings
from bkenstate.session import StateSession
from bkenstate.state.gateway import CommandTransport
from bkenstate.state.reducer import wall_clock_ms

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def create_session(transport: CommandTransport, clock: Callable[[], int] = wall_clock_ms) -> StateSession:
    session = StateSession(transport, clock)
    logger.info("State session created (log level %s)", settings.LOG_LEVEL)
    return session
