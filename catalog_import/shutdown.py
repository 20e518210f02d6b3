"""Graceful shutdown handling for import runs.

The first SIGINT/SIGTERM asks the run to stop after the batch in flight, so
the image cache and sink are left consistent and a re-run resumes cleanly.
A second signal runs cleanup and exits.
"""

import signal
import sys
import threading
from typing import Callable, Dict, List

from catalog_import.logging_config import get_logger

__all__ = [
    "ShutdownHandler",
    "get_shutdown_handler",
    "shutdown_requested",
]

logger = get_logger("shutdown")

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ShutdownHandler:
    """Stop flag for an import run, set from signal handlers.

    Usage:
        handler = get_shutdown_handler().install()
        handler.register_cleanup(sink.close)
        try:
            run.run(records)  # checks shutdown_requested() between batches
        finally:
            handler.cleanup()
            handler.uninstall()
    """

    def __init__(self) -> None:
        self._stop = threading.Event()
        self._callbacks: List[Callable[[], None]] = []
        self._previous: Dict[int, object] = {}

    def install(self) -> "ShutdownHandler":
        if not self._previous:
            for signum in HANDLED_SIGNALS:
                self._previous[signum] = signal.signal(signum, self._on_signal)
        return self

    def uninstall(self) -> None:
        for signum, previous in self._previous.items():
            if previous is not None:
                signal.signal(signum, previous)
        self._previous.clear()

    def _on_signal(self, signum: int, frame) -> None:
        name = signal.Signals(signum).name
        if self.shutdown_requested:
            logger.error(f"Received {name} again, quitting now")
            self.cleanup()
            sys.exit(1)
        logger.warning(f"Received {name}, stopping after the current batch (repeat to quit now)")
        self.request_shutdown()

    def request_shutdown(self) -> None:
        self._stop.set()

    @property
    def shutdown_requested(self) -> bool:
        return self._stop.is_set()

    def register_cleanup(self, callback: Callable[[], None]) -> None:
        self._callbacks.append(callback)

    def cleanup(self) -> None:
        """Run registered callbacks once; a failing callback does not stop the rest."""
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.warning(f"Cleanup callback failed: {e}")

    def reset(self) -> None:
        self._stop.clear()


_handler = ShutdownHandler()


def get_shutdown_handler() -> ShutdownHandler:
    return _handler


def shutdown_requested() -> bool:
    return _handler.shutdown_requested
