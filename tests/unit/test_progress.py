from __future__ import annotations

from unittest.mock import patch

from leadpitch.services.progress import ProgressTracker, is_tty_enabled


def test_is_tty_enabled_returns_stdout_isatty():
    with patch("sys.stdout.isatty", return_value=True):
        assert is_tty_enabled() is True
    with patch("sys.stdout.isatty", return_value=False):
        assert is_tty_enabled() is False


def test_tty_tracker_creates_ascii_bar():
    with patch("leadpitch.services.progress.is_tty_enabled", return_value=True), \
         patch("leadpitch.services.progress.tqdm") as mock_tqdm:
        tracker = ProgressTracker(25, description="Sending", unit="email")

        assert tracker.enabled is True
        mock_tqdm.assert_called_once_with(
            total=25,
            desc="Sending",
            unit="email",
            leave=True,
            position=0,
            ncols=80,
            ascii=True,
        )


def test_callback_updates_bar_by_delta():
    with patch("leadpitch.services.progress.is_tty_enabled", return_value=True), \
         patch("leadpitch.services.progress.tqdm") as mock_tqdm:
        bar = mock_tqdm.return_value
        bar.total = 25
        tracker = ProgressTracker(25)
        tracker(10, 25)
        tracker(20, 25)
        tracker(25, 25)

        assert [c.args[0] for c in bar.update.call_args_list] == [10, 10, 5]
        assert tracker.completed == 25


def test_non_tty_tracker_keeps_counts_without_bar():
    with patch("leadpitch.services.progress.is_tty_enabled", return_value=False), \
         patch("leadpitch.services.progress.tqdm") as mock_tqdm:
        with ProgressTracker(3) as tracker:
            tracker(2, 3)
            tracker.set_postfix(failed=0)
        mock_tqdm.assert_not_called()
        assert tracker.pbar is None
        assert tracker.completed == 2


def test_close_closes_bar_once():
    with patch("leadpitch.services.progress.is_tty_enabled", return_value=True), \
         patch("leadpitch.services.progress.tqdm") as mock_tqdm:
        bar = mock_tqdm.return_value
        tracker = ProgressTracker(1)
        tracker.close()
        tracker.close()
        bar.close.assert_called_once()
        assert tracker.pbar is None
