"""Stage timing for the rendering scripts."""

from __future__ import annotations

import logging
import time
from typing import Optional

logger = logging.getLogger(__name__)


class Timer:
    """Wall-clock timer for one render stage, usable as a context manager."""

    def __init__(self, name: str = "Timer", logger: Optional[logging.Logger] = None):
        """Initialize timer.

        Args:
            name: Stage name used in log messages
            logger: Logger to report to (defaults to this module's logger)
        """
        self.name = name
        self.logger = logger or logging.getLogger(__name__)
        self.start_time: Optional[float] = None
        self.end_time: Optional[float] = None

    def start(self) -> None:
        self.start_time = time.perf_counter()
        self.end_time = None

    def stop(self) -> float:
        """Stop the timer and return the stage duration in seconds."""
        if self.start_time is None:
            self.logger.warning(f"{self.name}: stop() called before start()")
            return 0.0

        self.end_time = time.perf_counter()
        duration = self.end_time - self.start_time
        self.logger.debug(f"{self.name} finished in {duration:.4f}s")
        return duration

    def __enter__(self) -> "Timer":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()

    @property
    def elapsed(self) -> float:
        """Seconds since start, frozen once the timer is stopped."""
        if self.start_time is None:
            return 0.0
        end = self.end_time if self.end_time is not None else time.perf_counter()
        return end - self.start_time
