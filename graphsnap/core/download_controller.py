"""Cooperative cancellation for sync runs."""

from enum import Enum

from graphsnap.utils.logging import get_logger

logger = get_logger(__name__)


class DownloadState(Enum):
    """Download state enumeration."""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class DownloadController:
    """
    Controls a sync run with cancel support.

    cancel() only sets a flag; work in progress (the current download)
    finishes, and the flag is checked before each page fetch and before
    each target of a batch.
    """

    def __init__(self):
        """Initialize download controller."""
        self.state = DownloadState.IDLE

    def is_idle(self) -> bool:
        """Check if no run has started."""
        return self.state == DownloadState.IDLE

    def is_running(self) -> bool:
        """Check if a run is in progress."""
        return self.state == DownloadState.RUNNING

    def is_cancelled(self) -> bool:
        """Check if the run was cancelled."""
        return self.state == DownloadState.CANCELLED

    def is_completed(self) -> bool:
        """Check if the run completed."""
        return self.state == DownloadState.COMPLETED

    def start(self):
        """Start a run, clearing any previous outcome."""
        self.state = DownloadState.RUNNING

    def cancel(self) -> bool:
        """
        Request cancellation of the running operation.

        Safe to call from a signal handler.

        Returns:
            True if a running operation was cancelled
        """
        if self.state != DownloadState.RUNNING:
            return False
        self.state = DownloadState.CANCELLED
        logger.warning("Cancelling... waiting for the current operation to complete.")
        return True

    def complete(self):
        """Mark the run as completed unless it was cancelled."""
        if self.state == DownloadState.RUNNING:
            self.state = DownloadState.COMPLETED

    def reset(self):
        """Return to idle."""
        self.state = DownloadState.IDLE
