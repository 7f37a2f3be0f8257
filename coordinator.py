from __future__ import annotations

import asyncio
from typing import Optional

from loguru import logger

from db import (
    AsyncExerciseHistoryRepository,
    AsyncTrainingCompletionRepository,
    AsyncTrainingProgressRepository,
)
from models import ExerciseCompletionData, ServerResponse
from session_service import (
    ExerciseCompleted,
    SessionEvent,
    SetCompleted,
    TrainingCompleted,
    TrainingSession,
)
from sync_service import SyncService


def completion_payload(event: ExerciseCompleted, user_id: str) -> ExerciseCompletionData:
    entry = event.entry
    return ExerciseCompletionData(
        user_id=user_id,
        exercise_name=event.exercise_name,
        training_type=event.training_type,
        date=entry.date,
        weight=entry.weight,
        repeats=entry.repeats,
        rest_time=entry.rest_time,
        sets_data=list(entry.sets_data),
        completed=True,
    )


class SessionCoordinator:
    """Consume session events and perform the resulting I/O.

    The session publishes into an ``asyncio.Queue``; :meth:`run` drains it,
    writing progress, history and completions locally and dispatching the
    remote push as a detached task whose outcome is only logged.
    """

    def __init__(
        self,
        history_repo: AsyncExerciseHistoryRepository,
        progress_repo: AsyncTrainingProgressRepository,
        completion_repo: AsyncTrainingCompletionRepository,
        sync: SyncService,
    ) -> None:
        self.history = history_repo
        self.progress = progress_repo
        self.completions = completion_repo
        self.sync = sync
        self.queue: asyncio.Queue[SessionEvent] = asyncio.Queue()
        self._pushes: set[asyncio.Task] = set()
        self._runner: Optional[asyncio.Task] = None

    def attach(self, session: TrainingSession) -> None:
        session.on_event = self.queue.put_nowait
        for event in session.drain_events():
            self.queue.put_nowait(event)

    def start(self) -> asyncio.Task:
        if self._runner is None or self._runner.done():
            self._runner = asyncio.create_task(self.run())
        return self._runner

    async def run(self) -> None:
        while True:
            event = await self.queue.get()
            try:
                await self.handle(event)
            except Exception:
                logger.exception(f"Failed to handle session event {event!r}")
            finally:
                self.queue.task_done()

    async def handle(self, event: SessionEvent) -> None:
        if isinstance(event, SetCompleted):
            await self.progress.save(
                event.training_type, event.exercise_name, event.completed_sets, event.date
            )
        elif isinstance(event, ExerciseCompleted):
            await self.history.append(event.exercise_name, event.entry)
            self._dispatch_push(event)
        elif isinstance(event, TrainingCompleted):
            await self.completions.add(event.training_type, list(event.exercises))
            logger.info(f"Training {event.training_type!r} complete")

    def _dispatch_push(self, event: ExerciseCompleted) -> None:
        task = asyncio.create_task(self._push(event))
        self._pushes.add(task)
        task.add_done_callback(self._pushes.discard)

    async def _push(self, event: ExerciseCompleted) -> ServerResponse:
        user_id = await asyncio.to_thread(self.sync.get_user_id)
        payload = completion_payload(event, user_id)
        result = await asyncio.to_thread(self.sync.update_user_data, payload)
        if result.success:
            logger.debug(f"Pushed completion of {event.exercise_name!r}")
        else:
            logger.warning(
                f"Completion of {event.exercise_name!r} kept locally: {result.error}"
            )
        return result

    async def join(self) -> None:
        """Wait until queued events are handled and pushes have settled."""
        await self.queue.join()
        while self._pushes:
            await asyncio.gather(*list(self._pushes), return_exceptions=True)

    async def stop(self) -> None:
        await self.join()
        if self._runner is not None:
            self._runner.cancel()
            try:
                await self._runner
            except asyncio.CancelledError:
                pass
            self._runner = None
