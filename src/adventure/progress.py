"""Progress reporting for export and import runs.

Reporters are passive sinks; nothing they do affects the outcome of a run.
The total may rise while a run is in progress as nested assets are discovered.
"""

import logging
from typing import List, Optional

logger = logging.getLogger(__name__)


class ProgressReporter:
    """Base reporter that ignores every update."""

    def update(self, current: int, total: int, label: str) -> None:
        """Receive the running (current, total) step counter."""
        pass

    def notify_error(self, message: str) -> None:
        """Receive a failure the end user should see."""
        pass


class LoggingProgressReporter(ProgressReporter):
    """Reporter that logs percentage progress and user-facing errors."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger

    def update(self, current: int, total: int, label: str) -> None:
        percent = int((current / total) * 100) if total else 100
        self.log.info(f"[{percent:3d}%] {current}/{total} {label}")

    def notify_error(self, message: str) -> None:
        self.log.error(message)


class RecordingProgressReporter(ProgressReporter):
    """Reporter that keeps every update, for callers that render progress themselves."""

    def __init__(self):
        self.updates: List[tuple] = []
        self.errors: List[str] = []

    def update(self, current: int, total: int, label: str) -> None:
        self.updates.append((current, total, label))

    def notify_error(self, message: str) -> None:
        self.errors.append(message)


class ProgressTracker:
    """Running step counter feeding a reporter."""

    def __init__(self, reporter: Optional[ProgressReporter] = None, total: int = 0):
        self.reporter = reporter or ProgressReporter()
        self.current = 0
        self.total = total

    def grow(self, steps: int) -> None:
        """Add newly discovered steps to the total."""
        self.total += max(steps, 0)

    def advance(self, label: str, steps: int = 1) -> None:
        """Complete ``steps`` steps and report."""
        self.current += steps
        self.report(label)

    def report(self, label: str) -> None:
        """Report the counter without advancing it."""
        # The reporter must never see current > total
        self.total = max(self.total, self.current)
        self.reporter.update(self.current, self.total, label)

    def notify_error(self, message: str) -> None:
        self.reporter.notify_error(message)
