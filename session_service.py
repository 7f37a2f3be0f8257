from __future__ import annotations

import datetime
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Union

from loguru import logger

from algorithms.rest_timer import RestTimer
from db import TrainingProgressRepository
from models import ExerciseHistoryEntry, ExerciseSpec, SetData, TrainingPlan
from recommendation_service import RecommendationService

DEFAULT_REST_TIME = 60


class SessionStateError(ValueError):
    """Raised when a command is not valid in the current session state."""


class InvalidInputError(ValueError):
    """Raised for malformed weight, repeats or rest input."""


class MissingValueError(ValueError):
    """Raised when a set is submitted without a weight or repeats value."""


class ExerciseStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    RESTING = "resting"
    COMPLETED = "completed"


class SessionPhase(str, Enum):
    SELECTING = "selecting"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"


def _to_number(value, kind: type, label: str):
    if isinstance(value, bool):
        raise InvalidInputError(f"{label} must be a number")
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidInputError(f"{label} must be a number, got {value!r}")
    if math.isnan(number) or math.isinf(number):
        raise InvalidInputError(f"{label} must be finite")
    if kind is int:
        if not number.is_integer():
            raise InvalidInputError(f"{label} must be a whole number")
        return int(number)
    return number


def parse_weight(value) -> Optional[float]:
    """Validate a weight entry. Empty input means unset, 0 means bodyweight."""
    if value is None:
        return None
    weight = _to_number(value, float, "weight")
    if weight is not None and weight < 0:
        raise InvalidInputError("weight must not be negative")
    return weight


def parse_repeats(value) -> Optional[int]:
    if value is None:
        return None
    repeats = _to_number(value, int, "repeats")
    if repeats is not None and repeats <= 0:
        raise InvalidInputError("repeats must be positive")
    return repeats


def parse_rest_time(value) -> Optional[int]:
    if value is None:
        return None
    rest = _to_number(value, int, "rest time")
    if rest is not None and rest <= 0:
        raise InvalidInputError("rest time must be positive")
    return rest


@dataclass
class ExerciseState:
    """Live status of one exercise during a session."""

    total_sets: int
    current_set: int = 0
    completed: bool = False
    is_active: bool = False
    is_resting: bool = False
    start_timestamp: Optional[int] = None
    rest_duration: Optional[int] = None
    weight: Optional[float] = None
    repeats: Optional[int] = None
    custom_rest_time: Optional[int] = None
    sets_data: list[SetData] = field(default_factory=list)

    @property
    def status(self) -> ExerciseStatus:
        if self.completed:
            return ExerciseStatus.COMPLETED
        if self.is_resting:
            return ExerciseStatus.RESTING
        if self.is_active:
            return ExerciseStatus.ACTIVE
        return ExerciseStatus.PENDING

    def rest_timer(self) -> Optional[RestTimer]:
        if not self.is_resting or self.start_timestamp is None or self.rest_duration is None:
            return None
        return RestTimer.from_millis(self.rest_duration, self.start_timestamp)

    def time_left(self, now: Optional[float] = None) -> int:
        timer = self.rest_timer()
        return timer.time_left(now) if timer else 0


@dataclass
class TrainingState:
    selected_training: Optional[str] = None
    exercises: list[str] = field(default_factory=list)
    exercise_states: dict[str, ExerciseState] = field(default_factory=dict)
    current_exercise_index: int = 0
    is_training_complete: bool = False
    training_plan_version: Optional[str] = None

    def all_completed(self) -> bool:
        return bool(self.exercises) and all(
            self.exercise_states[name].completed for name in self.exercises
        )


@dataclass(frozen=True)
class SetCompleted:
    training_type: str
    exercise_name: str
    completed_sets: int
    total_sets: int
    set_data: SetData
    date: Optional[str] = None


@dataclass(frozen=True)
class ExerciseCompleted:
    training_type: str
    exercise_name: str
    entry: ExerciseHistoryEntry
    plan_version: Optional[str] = None


@dataclass(frozen=True)
class TrainingCompleted:
    training_type: str
    exercises: tuple[str, ...]
    plan_version: Optional[str] = None


SessionEvent = Union[SetCompleted, ExerciseCompleted, TrainingCompleted]


class TrainingSession:
    """State machine driving a trainee through one training type.

    Transitions only touch in-memory state. Anything that needs I/O is
    published as an event to ``on_event``; without a listener events are
    kept in an outbox until :meth:`drain_events` is called.
    """

    def __init__(
        self,
        plan: TrainingPlan,
        recommender: RecommendationService,
        progress_repo: TrainingProgressRepository | None = None,
        on_event: Callable[[SessionEvent], None] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.plan = plan
        self.recommender = recommender
        self.progress = progress_repo
        self.on_event = on_event
        self.clock = clock
        self.state = TrainingState(training_plan_version=plan.version)
        self.show_congratulation = False
        self._completed_in_play = False
        self._outbox: list[SessionEvent] = []

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def phase(self) -> SessionPhase:
        if self.state.selected_training is None:
            return SessionPhase.SELECTING
        if self.state.is_training_complete:
            return SessionPhase.COMPLETE
        return SessionPhase.IN_PROGRESS

    def available_trainings(self) -> list[str]:
        return self.plan.training_types()

    def is_first_time(self, training_type: str) -> bool:
        return self.recommender.is_first_time(self.plan.exercises_for(training_type))

    @property
    def current_exercise_name(self) -> Optional[str]:
        if not self.state.exercises:
            return None
        return self.state.exercises[self.state.current_exercise_index]

    def current_spec(self) -> ExerciseSpec:
        self._require_selected()
        return self.plan.trainings[self.state.selected_training][self.current_exercise_name]

    def current_state(self) -> ExerciseState:
        self._require_selected()
        return self.state.exercise_states[self.current_exercise_name]

    def overview(self, now: Optional[float] = None) -> list[dict]:
        """Return one row per exercise for progress displays."""
        now = self._now(now)
        rows = []
        for idx, name in enumerate(self.state.exercises):
            st = self.state.exercise_states[name]
            rows.append(
                {
                    "index": idx,
                    "name": name,
                    "current_set": st.current_set,
                    "total_sets": st.total_sets,
                    "status": st.status,
                    "time_left": st.time_left(now),
                    "is_current": idx == self.state.current_exercise_index,
                }
            )
        return rows

    def drain_events(self) -> list[SessionEvent]:
        events, self._outbox = self._outbox, []
        return events

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def select_training(self, training_type: str, now: Optional[float] = None) -> TrainingState:
        """Initialise the session for ``training_type``, resuming the progress of ``now``'s day."""
        if training_type not in self.plan.trainings:
            raise SessionStateError(f"Unknown training type {training_type!r}")
        names = self.plan.exercises_for(training_type)
        if not names:
            raise SessionStateError(f"Training {training_type!r} has no exercises")

        saved = {}
        if self.progress is not None:
            saved = self.progress.fetch_for_training(training_type, self._day(now))
        states: dict[str, ExerciseState] = {}
        for name in names:
            spec = self.plan.trainings[training_type][name]
            done = saved.get(name, 0)
            if done >= spec.number_of_sets:
                states[name] = ExerciseState(
                    total_sets=spec.number_of_sets,
                    current_set=spec.number_of_sets,
                    completed=True,
                )
                continue
            defaults = self.recommender.resolve(name, spec)
            states[name] = ExerciseState(
                total_sets=spec.number_of_sets,
                current_set=done,
                weight=defaults.weight,
                repeats=defaults.repeats,
                custom_rest_time=defaults.rest_time,
            )

        first_open = next((i for i, n in enumerate(names) if not states[n].completed), 0)
        self.state = TrainingState(
            selected_training=training_type,
            exercises=names,
            exercise_states=states,
            current_exercise_index=first_open,
            training_plan_version=self.plan.version,
        )
        self.show_congratulation = False
        self._completed_in_play = False
        self._sync_completion()
        logger.info(
            f"Selected training {training_type!r} ({len(names)} exercises, phase={self.phase.value})"
        )
        return self.state

    def start_set(self, now: Optional[float] = None) -> ExerciseState:
        """Move the current exercise from pending to active."""
        st = self.current_state()
        if st.completed:
            raise SessionStateError(f"{self.current_exercise_name!r} is already completed")
        if st.is_resting:
            self.refresh(now)
            if st.is_resting:
                raise SessionStateError("Rest period still running")
        st.is_active = True
        logger.debug(f"Started set {st.current_set + 1} of {self.current_exercise_name!r}")
        return st

    def update_weight(self, value) -> ExerciseState:
        st = self.current_state()
        st.weight = parse_weight(value)
        return st

    def update_repeats(self, value) -> ExerciseState:
        st = self.current_state()
        st.repeats = parse_repeats(value)
        return st

    def update_rest_time(self, value) -> ExerciseState:
        """Change the rest used after the next set; a running rest keeps its duration."""
        st = self.current_state()
        st.custom_rest_time = parse_rest_time(value)
        return st

    def submit_set(
        self,
        weight=None,
        repeats=None,
        now: Optional[float] = None,
    ) -> list[SessionEvent]:
        """Record the result of the active set and advance the exercise."""
        st = self.current_state()
        name = self.current_exercise_name
        if st.completed:
            raise SessionStateError(f"{name!r} is already completed")
        if not st.is_active:
            raise SessionStateError(f"No set in progress for {name!r}")

        w = parse_weight(weight) if weight is not None else st.weight
        r = parse_repeats(repeats) if repeats is not None else st.repeats
        if w is None:
            raise MissingValueError(f"Enter a weight for {name!r}")
        if r is None:
            raise MissingValueError(f"Enter repeats for {name!r}")

        now = self._now(now)
        training_type = self.state.selected_training
        st.weight = w
        st.repeats = r
        set_data = SetData(weight=w if w > 0 else None, repeats=r)
        st.sets_data.append(set_data)
        st.current_set += 1

        events: list[SessionEvent] = [
            SetCompleted(
                training_type, name, st.current_set, st.total_sets, set_data, self._day(now)
            )
        ]
        if st.current_set >= st.total_sets:
            st.completed = True
            st.is_active = False
            st.is_resting = False
            st.start_timestamp = None
            st.rest_duration = None
            events.append(
                ExerciseCompleted(
                    training_type,
                    name,
                    self._history_entry(st, now),
                    self.plan.version,
                )
            )
            logger.info(f"Completed {name!r} in training {training_type!r}")
        else:
            st.is_active = False
            st.is_resting = True
            st.start_timestamp = int(now * 1000)
            st.rest_duration = st.custom_rest_time or DEFAULT_REST_TIME
            logger.debug(f"Resting {st.rest_duration}s after set {st.current_set} of {name!r}")

        was_complete = self.state.is_training_complete
        self._sync_completion()
        if self.state.is_training_complete and not was_complete:
            self._completed_in_play = True
            events.append(
                TrainingCompleted(
                    training_type, tuple(self.state.exercises), self.plan.version
                )
            )
        for event in events:
            self._emit(event)
        return events

    def refresh(self, now: Optional[float] = None) -> list[str]:
        """Finish every rest whose timer has run out; return the affected exercises."""
        now = self._now(now)
        finished = []
        for name in self.state.exercises:
            st = self.state.exercise_states[name]
            timer = st.rest_timer()
            if timer is not None and timer.is_finished(now):
                self._end_rest(st)
                finished.append(name)
        return finished

    def skip_rest(self) -> ExerciseState:
        st = self.current_state()
        if not st.is_resting:
            raise SessionStateError("No rest period to skip")
        self._end_rest(st)
        return st

    def go_to_exercise(self, index: int) -> str:
        self._require_selected()
        if not 0 <= index < len(self.state.exercises):
            raise SessionStateError(f"Exercise index {index} out of range")
        self.state.current_exercise_index = index
        return self.state.exercises[index]

    def next_exercise(self) -> Optional[str]:
        """Advance to the next incomplete exercise, wrapping around.

        Returns ``None`` once every exercise is complete, in which case the
        session enters the complete phase. The congratulation is only shown
        when the last set was played in this session, not when a finished
        training is re-viewed.
        """
        self._require_selected()
        if self.state.all_completed():
            self.state.is_training_complete = True
            self.show_congratulation = self._completed_in_play
            return None
        total = len(self.state.exercises)
        start = self.state.current_exercise_index
        for step in range(1, total + 1):
            idx = (start + step) % total
            name = self.state.exercises[idx]
            if not self.state.exercise_states[name].completed:
                self.state.current_exercise_index = idx
                return name
        return None

    def reset(self) -> None:
        """Return to training selection. Durable history is untouched."""
        self.state = TrainingState(training_plan_version=self.plan.version)
        self.show_congratulation = False
        self._completed_in_play = False

    def change_plan(self, plan: TrainingPlan) -> None:
        if plan.version != self.plan.version:
            logger.info(f"Switching training plan {self.plan.version} -> {plan.version}")
        self.plan = plan
        self.reset()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _now(self, now: Optional[float]) -> float:
        return self.clock() if now is None else now

    def _day(self, now: Optional[float]) -> str:
        return datetime.date.fromtimestamp(self._now(now)).isoformat()

    def _require_selected(self) -> None:
        if self.state.selected_training is None:
            raise SessionStateError("No training selected")

    def _sync_completion(self) -> None:
        self.state.is_training_complete = self.state.all_completed()

    @staticmethod
    def _end_rest(st: ExerciseState) -> None:
        st.is_resting = False
        st.is_active = False
        st.start_timestamp = None
        st.rest_duration = None

    @staticmethod
    def _history_entry(st: ExerciseState, now: float) -> ExerciseHistoryEntry:
        first = st.sets_data[0] if st.sets_data else SetData()
        return ExerciseHistoryEntry(
            date=datetime.datetime.fromtimestamp(now, tz=datetime.timezone.utc).isoformat(),
            weight=first.weight,
            repeats=first.repeats,
            rest_time=st.custom_rest_time or DEFAULT_REST_TIME,
            completed_sets=st.current_set,
            total_sets=st.total_sets,
            sets_data=list(st.sets_data),
        )

    def _emit(self, event: SessionEvent) -> None:
        if self.on_event is not None:
            self.on_event(event)
        else:
            self._outbox.append(event)
