"""Tests for timing module."""

import logging
import sys
import time
import unittest
from pathlib import Path

# Add parent directory to path
sys.path.append(str(Path(__file__).resolve().parent.parent))

from gpumath.timing import Timer


class TestTimer(unittest.TestCase):
    """Test the stage timer."""

    def test_context_manager(self):
        """Test that elapsed is frozen once the block exits."""
        with Timer("block") as timer:
            time.sleep(0.01)
        elapsed = timer.elapsed

        self.assertGreater(elapsed, 0.0)
        time.sleep(0.01)
        self.assertEqual(timer.elapsed, elapsed)

    def test_elapsed_while_running(self):
        """Test that a running timer reports increasing time."""
        timer = Timer("running")
        timer.start()
        first = timer.elapsed
        time.sleep(0.01)
        self.assertGreater(timer.elapsed, first)
        duration = timer.stop()
        self.assertEqual(timer.elapsed, duration)

    def test_not_started(self):
        """Test stopping a timer that never started."""
        timer = Timer("idle")
        self.assertEqual(timer.elapsed, 0.0)
        with self.assertLogs("gpumath.timing", level=logging.WARNING):
            self.assertEqual(timer.stop(), 0.0)


if __name__ == "__main__":
    unittest.main()
