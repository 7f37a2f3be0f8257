import math
from typing import Iterable


class MathTools:
    """Provides essential numeric helpers for set and rest calculations."""

    REST_INCREMENT: int = 5

    @staticmethod
    def clamp(value: float, min_value: float, max_value: float) -> float:
        """Clamp ``value`` to the inclusive range [min_value, max_value]."""
        if min_value > max_value:
            raise ValueError("min_value must not exceed max_value")
        return max(min_value, min(value, max_value))

    @staticmethod
    def round_half_up(value: float) -> int:
        """Round to the nearest integer with halves rounded up."""
        return int(math.floor(value + 0.5))

    @classmethod
    def round_to_increment(cls, value: float, increment: int) -> int:
        """Round ``value`` to the nearest multiple of ``increment``."""
        if increment <= 0:
            raise ValueError("increment must be positive")
        return cls.round_half_up(value / increment) * increment

    @staticmethod
    def midpoint(low: float, high: float) -> float:
        return (low + high) / 2

    @classmethod
    def default_rest_time(cls, minimum: int, maximum: int) -> int:
        """Return a rest time strictly between ``minimum`` and ``maximum``.

        The midpoint is rounded to the nearest 5 seconds. When that lands on
        or outside a bound the midpoint is rounded to a whole second instead,
        and bounds one second apart yield ``minimum``.
        """
        if minimum > maximum:
            raise ValueError("minimum must not exceed maximum")
        if minimum == maximum:
            return minimum
        mid = cls.midpoint(minimum, maximum)
        for candidate in (
            cls.round_to_increment(mid, cls.REST_INCREMENT),
            cls.round_half_up(mid),
        ):
            if minimum < candidate < maximum:
                return candidate
        return minimum

    @classmethod
    def default_repeats(cls, minimum: int, maximum: int) -> int:
        return cls.round_half_up(cls.midpoint(minimum, maximum))

    @staticmethod
    def volume(sets: Iterable[tuple[int, float]]) -> float:
        """Compute training volume as the sum of reps times weight."""
        vol = 0.0
        for reps, weight in sets:
            vol += reps * weight
        return vol

    @staticmethod
    def round_to(value: float, digits: int = 2) -> float:
        factor = 10**digits
        return math.floor(value * factor + 0.5) / factor
