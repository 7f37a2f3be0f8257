import math
import time


class RestTimer:
    """Countdown for a rest period derived from wall-clock time.

    Nothing is decremented between observations: every query recomputes the
    remaining time from ``start_timestamp``, so a suspended process reads the
    correct value as soon as it wakes up.
    """

    def __init__(self, rest_duration: int, start_timestamp: float) -> None:
        if rest_duration < 0:
            raise ValueError("rest_duration must be non-negative")
        self.rest_duration = int(rest_duration)
        self.start_timestamp = float(start_timestamp)

    @classmethod
    def from_millis(cls, rest_duration: int, start_ms: int) -> "RestTimer":
        return cls(rest_duration, start_ms / 1000.0)

    def elapsed(self, now: float | None = None) -> int:
        now = time.time() if now is None else now
        return max(0, math.floor(now - self.start_timestamp))

    def time_left(self, now: float | None = None) -> int:
        return max(0, self.rest_duration - self.elapsed(now))

    def is_finished(self, now: float | None = None) -> bool:
        return self.time_left(now) == 0

    def format_time_left(self, now: float | None = None) -> str:
        left = self.time_left(now)
        return f"{left // 60}:{left % 60:02d}"
