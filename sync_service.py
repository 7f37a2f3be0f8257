from __future__ import annotations

import os
import random
import sqlite3
import string
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

import requests
import yaml
from loguru import logger
from pydantic import ValidationError

from client import TrainingsClient
from db import StorageRepository, UserExerciseDataRepository
from models import (
    ExerciseCompletionData,
    ServerResponse,
    TrainingPlan,
    plans_newer_than,
    sort_plans,
)
from settings_schema import SettingsSchema

CACHED_PLANS_KEY = "cached_training_plans"
CURRENT_PLAN_KEY = "current_training_plan"
LAST_FETCH_KEY = "last_trainings_fetch"
USER_ID_KEY = "user_id"


def _parse_plans(raw, source: str) -> list[TrainingPlan]:
    if not isinstance(raw, list):
        if raw is not None:
            logger.warning(f"Ignoring malformed plan list from {source}")
        return []
    try:
        return [TrainingPlan.model_validate(p) for p in raw]
    except ValidationError as e:
        logger.warning(f"Ignoring invalid plans from {source}: {e}")
        return []


def load_local_plans(path: Optional[str]) -> list[TrainingPlan]:
    """Load the plan catalog bundled with the app from a YAML file."""
    if not path or not os.path.exists(path):
        return []
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.warning(f"Ignoring unreadable plan catalog {path}: {e}")
        return []
    if isinstance(data, dict):
        data = data.get("plans")
    return _parse_plans(data, path)


@dataclass
class SyncState:
    """Plan cache and fetch bookkeeping owned by the sync service."""

    known_plans: list[TrainingPlan] = field(default_factory=list)
    current_plan: Optional[TrainingPlan] = None
    last_fetch_at: Optional[float] = None

    @classmethod
    def load(cls, storage: StorageRepository) -> "SyncState":
        """Read the state from storage; corrupt values count as absent."""
        known = sort_plans(_parse_plans(storage.get_json(CACHED_PLANS_KEY), "cache"))
        current = None
        raw_current = storage.get_json(CURRENT_PLAN_KEY)
        if raw_current is not None:
            try:
                current = TrainingPlan.model_validate(raw_current)
            except ValidationError as e:
                logger.warning(f"Ignoring corrupt cached plan: {e}")
        if current is not None:
            known = sort_plans(known + [current])
        elif known:
            current = known[-1]
        last_fetch = storage.get_text(LAST_FETCH_KEY)
        try:
            last_fetch_at = float(last_fetch) if last_fetch is not None else None
        except ValueError:
            last_fetch_at = None
        return cls(known_plans=known, current_plan=current, last_fetch_at=last_fetch_at)

    def save(self, storage: StorageRepository) -> None:
        storage.set_json(CACHED_PLANS_KEY, [p.to_json_dict() for p in self.known_plans])
        if self.current_plan is not None:
            storage.set_json(CURRENT_PLAN_KEY, self.current_plan.to_json_dict())
        if self.last_fetch_at is not None:
            storage.set_text(LAST_FETCH_KEY, repr(self.last_fetch_at))

    def merge(self, plans: list[TrainingPlan]) -> None:
        if not plans:
            return
        self.known_plans = sort_plans(self.known_plans + list(plans))
        self.current_plan = self.known_plans[-1]

    def newer_than(self, current_version: Optional[str]) -> list[TrainingPlan]:
        return plans_newer_than(self.known_plans, current_version)


class SyncService:
    """Reconcile the local plan cache with the server and push completions."""

    def __init__(
        self,
        storage: StorageRepository,
        backup_repo: UserExerciseDataRepository,
        settings: SettingsSchema | None = None,
        client: TrainingsClient | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings or SettingsSchema()
        self.storage = storage
        self.backup = backup_repo
        self.client = client or TrainingsClient(
            self.settings.server_url,
            timeout=self.settings.request_timeout,
            token=self.settings.api_token,
        )
        self.clock = clock
        self.state = SyncState.load(storage)
        self._user_id: Optional[str] = None
        self._user_id_lock = threading.Lock()

    def current_plan(self) -> Optional[TrainingPlan]:
        return self.state.current_plan

    def _in_cooldown(self, now: float) -> bool:
        last = self.state.last_fetch_at
        return last is not None and 0 <= now - last < self.settings.fetch_cooldown_seconds

    def _local_plans(self) -> list[TrainingPlan]:
        return load_local_plans(self.settings.local_plans_path)

    def fetch_new_trainings(self, current_version: Optional[str] = None) -> ServerResponse:
        """Return plans newer than ``current_version``, oldest first.

        Never raises: on failure the response carries ``success=False`` and
        plans derived from the cache and the bundled catalog.
        """
        now = self.clock()
        if self._in_cooldown(now):
            logger.info("Trainings already fetched recently, serving cache")
            return ServerResponse(success=True, data=self.state.newer_than(current_version))

        try:
            if self.settings.use_server_data:
                raw = self.client.fetch_latest_trainings(current_version)
                plans = _strict_plans(raw)
            else:
                plans = self._local_plans()
            self.state.merge(plans)
            self.state.last_fetch_at = now
            self.state.save(self.storage)
            logger.info(f"Fetched {len(plans)} training plan(s)")
            return ServerResponse(success=True, data=self.state.newer_than(current_version))
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Error fetching trainings, falling back to local data: {e}")
            self.state.merge(self._local_plans())
            return ServerResponse(
                success=False,
                error=str(e) or e.__class__.__name__,
                data=self.state.newer_than(current_version),
            )

    def update_user_data(self, exercise_data: ExerciseCompletionData) -> ServerResponse:
        """Send a completion record; a local backup is written regardless."""
        payload = exercise_data.to_json_dict()
        if not self.settings.use_server_data:
            return self._backup(payload, False, "Exercise data saved locally")
        try:
            self.client.post_exercise_data(payload)
        except (requests.RequestException, ValueError) as e:
            logger.warning(
                f"Error updating user data for {exercise_data.exercise_name!r}: {e}"
            )
            result = self._backup(payload, True, "Saved to local storage as fallback")
            if result.success:
                result = ServerResponse(success=False, error=str(e), data=result.data)
            return result
        return self._backup(payload, False, "Exercise data updated successfully")

    def _backup(self, payload: dict, fallback: bool, message: str) -> ServerResponse:
        try:
            self.backup.add(payload, fallback=fallback)
        except sqlite3.Error as e:
            logger.error(f"Could not write local exercise backup: {e}")
            return ServerResponse(
                success=False, error="Failed to save data both to server and locally"
            )
        return ServerResponse(success=True, data={"message": message})

    def get_user_id(self) -> str:
        """Return the device identifier, creating it on first use.

        Safe to call from the worker threads running concurrent pushes: the
        identifier is generated at most once per service.
        """
        with self._user_id_lock:
            if self._user_id is None:
                user_id = self.storage.get_text(USER_ID_KEY)
                if not user_id:
                    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
                    user_id = f"user_{int(self.clock() * 1000)}_{suffix}"
                    self.storage.set_text(USER_ID_KEY, user_id)
                    logger.info(f"Generated user id {user_id}")
                self._user_id = user_id
            return self._user_id


def _strict_plans(raw: list) -> list[TrainingPlan]:
    return [TrainingPlan.model_validate(p) for p in raw]
