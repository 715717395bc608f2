"""Regional recurrent predictors and their attention fusion."""

from .fusion import AttentionFuser
from .lstm import RegionalLSTM, SeededDropout
from .plstm import ParallelLSTM

__all__ = ["AttentionFuser", "ParallelLSTM", "RegionalLSTM", "SeededDropout"]
