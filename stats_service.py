from __future__ import annotations

from typing import List, Optional

from algorithms.adjusted_volume import AdjustedVolume
from db import ExerciseHistoryRepository, TrainingCompletionRepository


class StatisticsService:
    """Compute training statistics for history displays."""

    def __init__(
        self,
        history_repo: ExerciseHistoryRepository,
        completion_repo: TrainingCompletionRepository | None = None,
    ) -> None:
        self.history = history_repo
        self.completions = completion_repo

    def exercise_volume_history(self, exercise_name: str) -> List[dict]:
        """Adjusted volume of every entry with set data, oldest first."""
        entries = [e for e in self.history.fetch_history(exercise_name) if e.sets_data]
        entries.sort(key=lambda e: e.date)
        return [AdjustedVolume.for_entry(e) for e in entries]

    def next_recommended_training(self, available: List[str]) -> Optional[str]:
        """Suggest the training completed least often.

        When every training has the same non-zero count, the one whose last
        completion is oldest wins.
        """
        if not available:
            return None
        if len(available) == 1 or self.completions is None:
            return available[0]
        counts = self.completions.counts()
        fewest = min(counts.get(t, 0) for t in available)
        recommended = next(t for t in available if counts.get(t, 0) == fewest)
        same_count = all(counts.get(t, 0) == fewest for t in available)
        if same_count and fewest > 0:
            last_dates = self.completions.last_dates()
            return min(available, key=lambda t: last_dates.get(t, ""))
        return recommended
