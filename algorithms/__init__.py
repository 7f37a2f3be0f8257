from .math_tools import MathTools
from .rest_timer import RestTimer
from .adjusted_volume import AdjustedVolume

__all__ = ["MathTools", "RestTimer", "AdjustedVolume"]
