"""Temporal response function decoder built on sklearn Ridge regression."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
from sklearn.linear_model import Ridge
from sklearn.preprocessing import StandardScaler

from aad_benchmark.data import Algorithm, Trial
from aad_benchmark.errors import ConfigurationError

from .base import BaseDecoder, PredictionResult, decide
from .features import build_lagged_features, lag_range, pearson_corr, shift

logger = logging.getLogger(__name__)


@dataclass
class TRFConfig:
    """Configuration for the ridge TRF decoder.

    Lags span ``min_lag_ms`` to ``max_lag_ms`` relative to the stimulus;
    ``ridge_alpha`` is the fixed regularization and must stay positive so the
    normal equations remain well-posed with collinear lag columns.
    """

    min_lag_ms: float = -100.0
    max_lag_ms: float = 400.0
    ridge_alpha: float = 1e-3
    feature_normalization: bool = False

    def __post_init__(self) -> None:
        if not self.ridge_alpha > 0:
            raise ConfigurationError(f"ridge_alpha must be > 0, got {self.ridge_alpha}")
        if self.min_lag_ms > self.max_lag_ms:
            raise ConfigurationError("min_lag_ms must not exceed max_lag_ms")

    @property
    def alpha(self) -> float:
        """Alias for ridge_alpha."""

        return self.ridge_alpha


class TRFModel:
    """Forward TRF mapping one envelope to every EEG channel.

    ``weights`` has shape (C, L, B): channel, lag, envelope band. Prediction
    in the decoding direction maps EEG back onto the envelope through the
    same weights, averaged across channels.
    """

    def __init__(self, lags: np.ndarray, alpha: float, normalize: bool = False):
        self.lags = np.asarray(lags, dtype=int)
        self.alpha = float(alpha)
        self.normalize = normalize
        self.weights: Optional[np.ndarray] = None
        self._env_norm: Optional[StandardScaler] = None
        self._eeg_norm: Optional[StandardScaler] = None

    def fit(self, envelopes: Sequence[np.ndarray], eegs: Sequence[np.ndarray]) -> "TRFModel":
        """Fit ridge weights ``(X'X + alpha I)^-1 X'Y`` over all given trials.

        Parameters
        ----------
        envelopes:
            One (T_i, B) envelope per trial.
        eegs:
            Matching (T_i, C) EEG arrays.
        """

        if not envelopes:
            raise ValueError("TRFModel.fit needs at least one trial")
        if self.normalize:
            self._env_norm = StandardScaler().fit(np.concatenate(envelopes, axis=0))
            self._eeg_norm = StandardScaler().fit(np.concatenate(eegs, axis=0))
        # Lagging is done per trial so no sample leaks across trial boundaries.
        X = np.concatenate([build_lagged_features(self._env(e), self.lags) for e in envelopes], axis=0)
        Y = np.concatenate([self._eeg(y) for y in eegs], axis=0)
        ridge = Ridge(alpha=self.alpha, fit_intercept=False)
        ridge.fit(X, Y)
        coef = np.atleast_2d(ridge.coef_)
        n_channels = Y.shape[1]
        n_bands = envelopes[0].shape[1]
        self.weights = coef.reshape(n_channels, n_bands, len(self.lags)).transpose(0, 2, 1)
        return self

    def _env(self, envelope: np.ndarray) -> np.ndarray:
        return self._env_norm.transform(envelope) if self._env_norm is not None else np.asarray(envelope)

    def _eeg(self, eeg: np.ndarray) -> np.ndarray:
        return self._eeg_norm.transform(eeg) if self._eeg_norm is not None else np.asarray(eeg)

    def reconstruct(self, eeg: np.ndarray) -> np.ndarray:
        """Map EEG (T, C) back to an envelope estimate (T, B)."""

        if self.weights is None:
            raise RuntimeError("TRFModel has not been fit yet.")
        eeg = self._eeg(eeg)
        n_channels = self.weights.shape[0]
        recon = np.zeros((eeg.shape[0], self.weights.shape[2]), dtype=np.float64)
        for i, lag in enumerate(self.lags):
            # Response at t + lag carries the stimulus sample at t.
            recon += shift(eeg, -int(lag)) @ self.weights[:, i, :]
        return recon / n_channels

    def score(self, eeg: np.ndarray, envelope: np.ndarray) -> float:
        """Correlation between reconstructed and true envelope, all bands flattened."""

        return pearson_corr(self._env(envelope), self.reconstruct(eeg))


class TRFDecoder(BaseDecoder):
    """Attended vs unattended TRF comparison on a held-out trial."""

    algorithm = Algorithm.TRF

    def __init__(self, config: TRFConfig | None = None):
        super().__init__(config or TRFConfig())

    def _new_model(self, sample_rate: float) -> TRFModel:
        lags = lag_range(self.config.min_lag_ms, self.config.max_lag_ms, sample_rate)
        return TRFModel(lags, alpha=self.config.ridge_alpha, normalize=self.config.feature_normalization)

    def fit_models(self, train_trials: Sequence[Trial]) -> Tuple[TRFModel, TRFModel]:
        """Fit the attended and unattended models on the same EEG."""

        if not train_trials:
            raise ValueError("TRF decoder needs at least one training trial")
        sample_rate = train_trials[0].sample_rate
        eegs = [t.eeg for t in train_trials]
        attended = self._new_model(sample_rate).fit([t.attended_envelope for t in train_trials], eegs)
        unattended = self._new_model(sample_rate).fit([t.unattended_envelope for t in train_trials], eegs)
        return attended, unattended

    def evaluate_fold(self, train_trials: Sequence[Trial], test_trial: Trial) -> List[PredictionResult]:
        attended_model, unattended_model = self.fit_models(train_trials)
        att = attended_model.score(test_trial.eeg, test_trial.attended_envelope)
        unatt = unattended_model.score(test_trial.eeg, test_trial.unattended_envelope)
        logger.debug("TRF %s: r_att=%.4f r_unatt=%.4f", test_trial.trial_id, att, unatt)
        return [decide(att, unatt, test_trial.trial_id)]


__all__ = ["TRFConfig", "TRFModel", "TRFDecoder"]
