import math
from dataclasses import dataclass
from datetime import datetime

BEFORE_START = "before_start"
IN_WINDOW = "in_window"
ENDED = "ended"


@dataclass
class Countdown:
    phase: str
    seconds: int
    message: str

    @property
    def can_join(self) -> bool:
        return self.phase == IN_WINDOW


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def format_duration(seconds: float) -> str:
    """Largest whole unit, rounded: "45 seconds", "5 minutes", "1 hour", "2 days"."""
    seconds = max(0, _round_half_up(seconds))
    if seconds < 60:
        unit, count = "second", seconds
    elif seconds < 3600:
        unit, count = "minute", _round_half_up(seconds / 60)
    elif seconds < 86400:
        unit, count = "hour", _round_half_up(seconds / 3600)
    else:
        unit, count = "day", _round_half_up(seconds / 86400)
    # 59.5 minutes rounds to the next unit, never "60 minutes"
    if unit == "minute" and count == 60:
        unit, count = "hour", 1
    elif unit == "hour" and count == 24:
        unit, count = "day", 1
    return f"{count} {unit}" if count == 1 else f"{count} {unit}s"


def format_clock(seconds: int) -> str:
    seconds = max(0, seconds)
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def compute_countdown(start_at: datetime, end_at: datetime, now: datetime) -> Countdown:
    """Where ``now`` sits relative to the window [start_at, end_at]."""
    if now > end_at:
        return Countdown(phase=ENDED, seconds=0, message="This consultation has ended.")
    if now < start_at:
        remaining = (start_at - now).total_seconds()
        return Countdown(
            phase=BEFORE_START,
            seconds=int(math.ceil(remaining)),
            message=f"Consultation starts in {format_duration(remaining)}.",
        )
    remaining = (end_at - now).total_seconds()
    return Countdown(
        phase=IN_WINDOW,
        seconds=int(math.ceil(remaining)),
        message=f"Consultation ends in {format_duration(remaining)}.",
    )
