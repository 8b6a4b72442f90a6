"""
Check Updates - Cancellation
Explicit cancellation token flipped by termination signals.
"""

import asyncio
import logging
import signal

logger = logging.getLogger(__name__)

TERMINATION_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGQUIT, signal.SIGHUP)


class CancellationToken:
    """Process-wide cancellation request, passed explicitly to whoever checks it."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason = ""

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()


def install_signal_handlers(loop: asyncio.AbstractEventLoop, token: CancellationToken) -> None:
    """Cancel ``token`` when the process receives a termination signal."""

    def on_signal(sig: signal.Signals) -> None:
        logger.warning(f"Received signal {sig.name}, terminating...")
        token.cancel(sig.name)

    for sig in TERMINATION_SIGNALS:
        try:
            loop.add_signal_handler(sig, on_signal, sig)
        except (NotImplementedError, RuntimeError) as e:
            logger.debug(f"Cannot watch {sig.name}: {e}")
