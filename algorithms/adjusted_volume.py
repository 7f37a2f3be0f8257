from models import ExerciseHistoryEntry, SetData
from .math_tools import MathTools


class AdjustedVolume:
    """Training performance metric combining load, rest, consistency and progression.

    ``AV = VL * RE * CF * POB`` where VL is the volume load, RE the rest
    efficiency, CF the share of planned sets completed and POB the
    progressive overload bonus of later sets over the first one.
    """

    BODYWEIGHT_FACTOR: int = 2
    REST_BASELINE: int = 180
    REST_SCALE: int = 300
    MAX_OVERLOAD_BONUS: float = 0.5

    @classmethod
    def volume_load(cls, sets_data: list[SetData]) -> float:
        """Sum of weight times reps; sets without weight count reps twice."""
        total = 0.0
        for s in sets_data:
            weight = s.weight or 0
            reps = s.repeats or 0
            if weight == 0 and reps > 0:
                total += reps * cls.BODYWEIGHT_FACTOR
            else:
                total += MathTools.volume([(reps, weight)])
        return total

    @classmethod
    def rest_efficiency(cls, rest_time: float) -> float:
        efficiency = 1 + (cls.REST_BASELINE - rest_time) / cls.REST_SCALE
        return MathTools.clamp(efficiency, 0.5, 1.5)

    @staticmethod
    def consistency_factor(completed_sets: int, total_sets: int) -> float:
        if total_sets <= 0:
            return 0.0
        return completed_sets / total_sets

    @classmethod
    def progressive_overload_bonus(cls, sets_data: list[SetData]) -> float:
        if len(sets_data) <= 1:
            return 1.0
        first = sets_data[0]
        first_load = (first.weight or 0) * (first.repeats or 0)
        if first_load == 0:
            return 1.0
        improvements = []
        for s in sets_data[1:]:
            load = (s.weight or 0) * (s.repeats or 0)
            if load > 0:
                improvements.append((load - first_load) / first_load)
        if not improvements:
            return 1.0
        average = sum(improvements) / len(improvements)
        return 1 + MathTools.clamp(average, 0.0, cls.MAX_OVERLOAD_BONUS)

    @classmethod
    def for_entry(cls, entry: ExerciseHistoryEntry) -> dict:
        sets_data = entry.sets_data
        vl = cls.volume_load(sets_data)
        re = cls.rest_efficiency(entry.rest_time)
        cf = cls.consistency_factor(entry.completed_sets, entry.total_sets)
        pob = cls.progressive_overload_bonus(sets_data)
        return {
            "date": entry.date,
            "adjusted_volume": MathTools.round_half_up(vl * re * cf * pob),
            "volume_load": MathTools.round_half_up(vl),
            "rest_efficiency": MathTools.round_to(re),
            "consistency_factor": MathTools.round_to(cf),
            "progressive_overload_bonus": MathTools.round_to(pob),
            "completed_sets": entry.completed_sets,
            "total_sets": entry.total_sets,
        }
