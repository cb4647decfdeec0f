"""Decoder abstractions shared by the correlation, TRF and CCA decoders."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, List, Sequence

import numpy as np

from aad_benchmark.data import Algorithm, Prediction, Trial

# Relative tolerance under which two scores count as equal.
TIE_TOLERANCE = 1e-12


@dataclass(frozen=True)
class PredictionResult:
    """Decision for one analysis unit (a window or a held-out trial)."""

    prediction: Prediction
    confidence: float
    attended_score: float
    unattended_score: float
    trial_id: str
    unit_index: int = 0

    @property
    def tie(self) -> bool:
        return self.prediction is Prediction.UNDECIDED

    @property
    def correctness(self) -> float:
        """1 for a correct decision, 0 for a wrong one, 0.5 for a tie."""

        if self.prediction is Prediction.UNDECIDED:
            return 0.5
        return 1.0 if self.prediction is Prediction.ATTENDED else 0.0


def _finite_or_zero(score: float) -> float:
    score = float(score)
    return score if np.isfinite(score) else 0.0


def decide(attended_score: float, unattended_score: float, trial_id: str, unit_index: int = 0) -> PredictionResult:
    """Predict ATTENDED when the attended-side score is strictly larger.

    Non-finite scores are treated as zero so a failed unit cannot win.
    """

    att = _finite_or_zero(attended_score)
    unatt = _finite_or_zero(unattended_score)
    diff = att - unatt
    if abs(diff) <= TIE_TOLERANCE * max(1.0, abs(att), abs(unatt)):
        prediction = Prediction.UNDECIDED
    elif diff > 0:
        prediction = Prediction.ATTENDED
    else:
        prediction = Prediction.UNATTENDED
    return PredictionResult(
        prediction=prediction,
        confidence=abs(diff),
        attended_score=att,
        unattended_score=unatt,
        trial_id=trial_id,
        unit_index=unit_index,
    )


class BaseDecoder(ABC):
    """Common interface for attention decoders.

    ``evaluate_fold`` is a pure function of its arguments: any model it needs
    is fitted inside the call and discarded on return.
    """

    algorithm: Algorithm
    requires_training: bool = True

    def __init__(self, config: Any):
        self.config = config

    @abstractmethod
    def evaluate_fold(self, train_trials: Sequence[Trial], test_trial: Trial) -> List[PredictionResult]:
        """Fit on ``train_trials`` (if needed) and classify ``test_trial``."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.config!r})"


__all__ = ["TIE_TOLERANCE", "PredictionResult", "decide", "BaseDecoder"]
