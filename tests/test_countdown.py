from datetime import datetime, timedelta, timezone

from teleconsult.countdown import (
    BEFORE_START,
    ENDED,
    IN_WINDOW,
    compute_countdown,
    format_clock,
    format_duration,
)

START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
END = START + timedelta(minutes=30)


class TestFormatDuration:
    def test_seconds(self):
        assert format_duration(45) == "45 seconds"

    def test_singular(self):
        assert format_duration(1) == "1 second"
        assert format_duration(60) == "1 minute"

    def test_minutes_round(self):
        assert format_duration(5 * 60 + 20) == "5 minutes"
        assert format_duration(5 * 60 + 30) == "6 minutes"

    def test_hours(self):
        assert format_duration(3600) == "1 hour"
        assert format_duration(2 * 3600 + 1200) == "2 hours"

    def test_days(self):
        assert format_duration(2 * 86400) == "2 days"

    def test_almost_an_hour_rolls_over(self):
        assert format_duration(3599) == "1 hour"

    def test_almost_a_day_rolls_over(self):
        assert format_duration(86399) == "1 day"

    def test_negative_clamps_to_zero(self):
        assert format_duration(-5) == "0 seconds"


class TestFormatClock:
    def test_formats_hours_minutes_seconds(self):
        assert format_clock(3725) == "01:02:05"

    def test_zero_and_negative(self):
        assert format_clock(0) == "00:00:00"
        assert format_clock(-3) == "00:00:00"


class TestComputeCountdown:
    def test_before_start(self):
        countdown = compute_countdown(START, END, START - timedelta(minutes=10))
        assert countdown.phase == BEFORE_START
        assert countdown.seconds == 600
        assert countdown.message == "Consultation starts in 10 minutes."
        assert not countdown.can_join

    def test_at_start_is_in_window(self):
        countdown = compute_countdown(START, END, START)
        assert countdown.phase == IN_WINDOW
        assert countdown.can_join

    def test_in_window(self):
        countdown = compute_countdown(START, END, START + timedelta(minutes=20))
        assert countdown.phase == IN_WINDOW
        assert countdown.seconds == 600
        assert countdown.message == "Consultation ends in 10 minutes."

    def test_partial_seconds_round_up(self):
        countdown = compute_countdown(START, END, END - timedelta(seconds=1.5))
        assert countdown.seconds == 2

    def test_exactly_at_end_still_joinable(self):
        countdown = compute_countdown(START, END, END)
        assert countdown.phase == IN_WINDOW
        assert countdown.seconds == 0

    def test_after_end(self):
        countdown = compute_countdown(START, END, END + timedelta(seconds=1))
        assert countdown.phase == ENDED
        assert countdown.seconds == 0
        assert countdown.message == "This consultation has ended."
        assert not countdown.can_join
