"""
SIGINT handling for long-running analyses.

While the context is active, Ctrl-C requests a cooperative stop of the
algorithm instead of raising KeyboardInterrupt in the middle of a
transfer function. The previous handler is restored on exit.
"""

from __future__ import annotations

from contextlib import contextmanager
import logging
import signal
import threading

logger = logging.getLogger(__name__)


@contextmanager
def stop_on_interrupt(algorithm):
    """
    Route SIGINT to ``algorithm.stop()`` for the duration of the block.

    Signal handlers can only be installed from the main thread; elsewhere
    this is a no-op and the caller should use a cancellation token.
    """
    if threading.current_thread() is not threading.main_thread():
        logger.debug("[CPA] Not on main thread, SIGINT handler not installed")
        yield algorithm
        return

    def interrupt_handler(signum, frame):
        algorithm.stop()

    old_handler = signal.signal(signal.SIGINT, interrupt_handler)
    try:
        yield algorithm
    finally:
        signal.signal(signal.SIGINT, old_handler)
