from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class JsonModel(BaseModel):
    """Base model serialising with the camelCase names used on the wire."""

    model_config = ConfigDict(populate_by_name=True)

    def to_json_dict(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class ExerciseSpec(JsonModel):
    """Prescription for one exercise within a training type."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    number_of_sets: int = Field(alias="numberOfSets", gt=0)
    minimum_repeats: int = Field(alias="minimumNumberOfRepeasts", gt=0)
    maximum_repeats: int = Field(alias="maximumNumberOfRepeasts", gt=0)
    minimum_rest: int = Field(alias="minimumTimeToRest", gt=0)
    maximum_rest: int = Field(alias="maximumTimeToRest", gt=0)
    note: str = ""
    link: str | None = None
    short: str | None = None

    @model_validator(mode="after")
    def _check_ranges(self) -> "ExerciseSpec":
        if self.minimum_repeats > self.maximum_repeats:
            raise ValueError("minimumNumberOfRepeasts exceeds maximumNumberOfRepeasts")
        if self.minimum_rest > self.maximum_rest:
            raise ValueError("minimumTimeToRest exceeds maximumTimeToRest")
        return self


class TrainingPlan(JsonModel):
    """Versioned collection of training types."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    version: str
    name: str = ""
    trainings: dict[str, dict[str, ExerciseSpec]] = Field(default_factory=dict)

    @field_validator("version", mode="before")
    @classmethod
    def _version_as_text(cls, value: Any) -> str:
        return str(value)

    def training_types(self) -> list[str]:
        return list(self.trainings.keys())

    def exercises_for(self, training_type: str) -> list[str]:
        return list(self.trainings.get(training_type, {}).keys())


class SetData(JsonModel):
    weight: float | None = None
    repeats: int | None = None


class ExerciseHistoryEntry(JsonModel):
    """Durable record of one completed exercise occurrence."""

    date: str
    weight: float | None = None
    repeats: int | None = None
    rest_time: int = Field(alias="restTime")
    completed_sets: int = Field(alias="completedSets")
    total_sets: int = Field(alias="totalSets")
    sets_data: list[SetData] = Field(default_factory=list, alias="setsData")

    def first_set(self) -> SetData | None:
        return self.sets_data[0] if self.sets_data else None


class ExerciseDefaults(JsonModel):
    weight: float | None = None
    rest_time: int | None = Field(None, alias="restTime")
    repeats: int | None = None

    def is_empty(self) -> bool:
        return self.weight is None and self.rest_time is None and self.repeats is None


class ExerciseCompletionData(JsonModel):
    user_id: str = Field(alias="userId")
    exercise_name: str = Field(alias="exerciseName")
    training_type: str = Field(alias="trainingType")
    date: str
    weight: float | None = None
    repeats: int | None = None
    rest_time: int = Field(alias="restTime")
    sets_data: list[SetData] | None = Field(None, alias="setsData")
    completed: bool = True


class ServerResponse(BaseModel):
    success: bool
    data: Any = None
    error: str | None = None


_VERSION_CHUNK = re.compile(r"(\d+)")


def version_key(version: str) -> tuple:
    """Sort key ordering numeric chunks numerically ("3.10" after "3.9")."""
    parts = []
    for chunk in _VERSION_CHUNK.split(str(version)):
        if not chunk:
            continue
        if chunk.isdigit():
            parts.append((1, int(chunk), ""))
        else:
            parts.append((0, 0, chunk))
    return tuple(parts)


def sort_plans(plans: list[TrainingPlan]) -> list[TrainingPlan]:
    """Return ``plans`` ordered oldest to newest, one per version."""
    by_version = {p.version: p for p in plans}
    return sorted(by_version.values(), key=lambda p: version_key(p.version))


def plans_newer_than(
    plans: list[TrainingPlan], current_version: str | None
) -> list[TrainingPlan]:
    ordered = sort_plans(plans)
    if current_version is None:
        return ordered
    current = version_key(current_version)
    return [p for p in ordered if version_key(p.version) > current]
