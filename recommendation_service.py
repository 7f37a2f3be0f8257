from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from loguru import logger

from algorithms.math_tools import MathTools
from db import ExerciseDefaultsRepository, ExerciseHistoryRepository
from models import ExerciseDefaults, ExerciseHistoryEntry, ExerciseSpec


@dataclass(frozen=True)
class ResolvedDefaults:
    """Values pre-filled when a set begins. ``weight`` may be unset."""

    weight: Optional[float]
    rest_time: int
    repeats: int


def calculate_default_rest_time(spec: ExerciseSpec) -> int:
    return MathTools.default_rest_time(spec.minimum_rest, spec.maximum_rest)


def calculate_default_repeats(spec: ExerciseSpec) -> int:
    return MathTools.default_repeats(spec.minimum_repeats, spec.maximum_repeats)


def resolve_defaults(
    spec: ExerciseSpec,
    history: list[ExerciseHistoryEntry],
    override: ExerciseDefaults | None = None,
) -> ResolvedDefaults:
    """Resolve weight, rest and repeats for one exercise.

    Each field takes the first defined value of its chain:

    * weight: override, first set of the newest entry, legacy weight of the
      newest entry, otherwise unset;
    * rest: override, a value between the prescribed rest bounds;
    * repeats: override, first set of the newest entry, newest repeats of any
      entry, midpoint of the prescribed repeat range.
    """
    override = override or ExerciseDefaults()
    latest = history[0] if history else None
    first = latest.first_set() if latest else None

    weight = override.weight
    if weight is None and first is not None:
        weight = first.weight
    if weight is None and latest is not None:
        weight = latest.weight

    rest_time = override.rest_time
    if rest_time is None:
        rest_time = calculate_default_rest_time(spec)

    repeats = override.repeats
    if repeats is None and first is not None:
        repeats = first.repeats
    if repeats is None:
        repeats = _newest_repeats(history)
    if repeats is None:
        repeats = calculate_default_repeats(spec)

    return ResolvedDefaults(weight=weight, rest_time=int(rest_time), repeats=int(repeats))


def _newest_repeats(history: Iterable[ExerciseHistoryEntry]) -> Optional[int]:
    for entry in history:
        first = entry.first_set()
        if first is not None and first.repeats is not None:
            return first.repeats
        if entry.repeats is not None:
            return entry.repeats
    return None


class RecommendationService:
    """Resolve per-exercise defaults from overrides, history and the plan."""

    def __init__(
        self,
        history_repo: ExerciseHistoryRepository,
        defaults_repo: ExerciseDefaultsRepository,
    ) -> None:
        self.history = history_repo
        self.defaults = defaults_repo

    def resolve(self, exercise_name: str, spec: ExerciseSpec) -> ResolvedDefaults:
        resolved = resolve_defaults(
            spec,
            self.history.fetch_history(exercise_name),
            self.defaults.fetch(exercise_name),
        )
        logger.debug(f"Resolved defaults for {exercise_name!r}: {resolved}")
        return resolved

    def is_first_time(self, exercise_names: Iterable[str]) -> bool:
        """Return ``True`` when no exercise of the training has history or overrides.

        Any single exercise with data disqualifies the whole training.
        """
        names = list(exercise_names)
        return not (
            self.history.has_any_history(names) or self.defaults.has_any(names)
        )

    def complete_first_time_setup(self, values: dict[str, ExerciseDefaults]) -> None:
        """Persist the overrides entered during first-time setup."""
        for name, value in values.items():
            self.defaults.save(
                name,
                weight=value.weight,
                rest_time=value.rest_time,
                repeats=value.repeats,
            )
        logger.info(f"Saved first-time defaults for {len(values)} exercises")

    def save_override(
        self,
        exercise_name: str,
        weight: Optional[float] = None,
        rest_time: Optional[int] = None,
        repeats: Optional[int] = None,
    ) -> ExerciseDefaults:
        self.defaults.save(exercise_name, weight=weight, rest_time=rest_time, repeats=repeats)
        return self.defaults.fetch(exercise_name)
