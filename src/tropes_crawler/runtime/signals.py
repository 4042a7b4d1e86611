"""Signal handling for graceful crawl shutdown."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
import logging
import signal


logger = logging.getLogger(__name__)


def install_shutdown_signals(shutdown_event: asyncio.Event | None = None) -> asyncio.Event:
    """Attach SIGINT/SIGTERM handlers that set ``shutdown_event``.

    The first signal asks the scheduler to stop dispatching; a second one
    restores the default handler so the process can be killed outright.
    Returns the event so the scheduler can poll it.
    """
    shutdown_event = shutdown_event or asyncio.Event()

    def _make_handler(sig: signal.Signals) -> Callable[[int, object | None], None]:
        def _handler(signum: int, frame: object | None) -> None:  # pragma: no cover - signal glue
            if shutdown_event.is_set():
                logger.warning("Received %s again, exiting immediately", sig.name)
                signal.signal(sig, signal.SIG_DFL)
                signal.raise_signal(sig)
                return
            logger.info("Received %s, finishing in-flight persistence before exit", sig.name)
            shutdown_event.set()

        return _handler

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            signal.signal(sig, _make_handler(sig))
        except ValueError:  # pragma: no cover - unsupported in some environments
            logger.debug("Signal %s is not supported in this context", sig.name)

    return shutdown_event
