"""Windowed envelope/EEG cross-correlation decoder."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Sequence

from aad_benchmark.data import Algorithm, Trial
from aad_benchmark.errors import ConfigurationError
from aad_benchmark.preprocessing.utils import SlidingWindow

from .base import BaseDecoder, PredictionResult, decide
from .features import max_abs_xcorr, ms_to_lag

logger = logging.getLogger(__name__)


@dataclass
class CorrelationConfig:
    window_seconds: float = 10.0
    step_seconds: float = 1.0
    max_lag_ms: float = 500.0

    def __post_init__(self) -> None:
        if self.window_seconds <= 0 or self.step_seconds <= 0:
            raise ConfigurationError("Correlation window and step must be positive")
        if self.max_lag_ms < 0:
            raise ConfigurationError("max_lag_ms must be >= 0")


class CorrelationDecoder(BaseDecoder):
    """Compare peak cross-correlation of the EEG with each envelope, per window.

    Sub-bands are summed into one envelope. No model is trained, so the
    training trials handed to :meth:`evaluate_fold` are ignored.
    """

    algorithm = Algorithm.CORRELATION
    requires_training = False

    def __init__(self, config: CorrelationConfig | None = None):
        super().__init__(config or CorrelationConfig())

    def windows(self, sample_rate: float) -> SlidingWindow:
        return SlidingWindow(
            size_samples=int(round(self.config.window_seconds * sample_rate)),
            step_samples=max(1, int(round(self.config.step_seconds * sample_rate))),
        )

    def evaluate_fold(self, train_trials: Sequence[Trial], test_trial: Trial) -> List[PredictionResult]:
        return self.evaluate_trial(test_trial)

    def evaluate_trial(self, trial: Trial) -> List[PredictionResult]:
        """One prediction per analysis window; empty if the trial is too short."""

        window = self.windows(trial.sample_rate)
        if window.count(trial.n_samples) == 0:
            logger.warning(
                "Trial %s (%.1f s) is shorter than one %.1f s window; no windows scored",
                trial.trial_id,
                trial.duration,
                self.config.window_seconds,
            )
            return []
        max_lag = ms_to_lag(self.config.max_lag_ms, trial.sample_rate)
        attended = trial.attended_envelope.sum(axis=1)
        unattended = trial.unattended_envelope.sum(axis=1)
        results: List[PredictionResult] = []
        for index, (start, end) in enumerate(window.generate(trial.n_samples)):
            eeg = trial.eeg[start:end]
            att = max_abs_xcorr(eeg, attended[start:end], max_lag)
            unatt = max_abs_xcorr(eeg, unattended[start:end], max_lag)
            results.append(decide(att, unatt, trial.trial_id, unit_index=index))
        return results


__all__ = ["CorrelationConfig", "CorrelationDecoder"]
