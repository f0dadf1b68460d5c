"""
Tests for roster fetch progress tracking.
"""

import logging

import pytest

from guildsync.progress import FetchProgress, _format_duration


class TestFormatDuration:
    @pytest.mark.parametrize(
        "seconds,expected",
        [(-1, "0s"), (45, "45s"), (60, "1m"), (150, "2m 30s"), (3600, "1h"), (4500, "1h 15m")],
    )
    def test_format(self, seconds, expected):
        assert _format_duration(seconds) == expected


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class TestFetchProgress:
    def test_rate_and_eta(self):
        clock = FakeClock()
        progress = FetchProgress("g", estimated_total=3000, clock=clock)

        progress.update(1000)
        clock.now += 10

        assert progress.pages == 1
        assert progress.members == 1000
        assert progress.rate == pytest.approx(100.0)
        assert progress.eta_seconds == pytest.approx(20.0)

    def test_no_eta_without_estimate(self):
        clock = FakeClock()
        progress = FetchProgress("g", clock=clock)
        progress.update(10)
        clock.now += 1
        assert progress.eta_seconds is None

    def test_zero_elapsed_rate(self):
        progress = FetchProgress("g", clock=FakeClock())
        progress.update(10)
        assert progress.rate == 0.0

    def test_log_lines(self, caplog):
        clock = FakeClock()
        progress = FetchProgress("guild-9", estimated_total=2000, clock=clock)
        progress.update(1000)
        clock.now += 5

        with caplog.at_level(logging.INFO, logger="guildsync.progress"):
            progress.log_page()
            progress.log_complete()

        assert "[Guild guild-9] page 1 1000/~2000 members (50%)" in caplog.text
        assert "Fetched guild guild-9: 1000 members in 1 pages" in caplog.text
