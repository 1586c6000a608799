"""
Download controller tests
"""

from graphsnap.core.download_controller import DownloadController, DownloadState


class TestDownloadController:
    """Tests for the run state machine."""

    def test_starts_idle(self):
        controller = DownloadController()

        assert controller.is_idle()
        assert not controller.is_running()

    def test_run_completes(self):
        controller = DownloadController()

        controller.start()
        assert controller.is_running()

        controller.complete()
        assert controller.is_completed()

    def test_cancel_running(self):
        controller = DownloadController()
        controller.start()

        assert controller.cancel() is True
        assert controller.is_cancelled()

        controller.complete()
        assert controller.state is DownloadState.CANCELLED

    def test_cancel_when_not_running(self):
        controller = DownloadController()

        assert controller.cancel() is False
        assert controller.is_idle()

        controller.start()
        controller.complete()
        assert controller.cancel() is False
        assert controller.is_completed()

    def test_restart_after_cancel(self):
        controller = DownloadController()
        controller.start()
        controller.cancel()

        controller.start()
        assert controller.is_running()

        controller.reset()
        assert controller.is_idle()
