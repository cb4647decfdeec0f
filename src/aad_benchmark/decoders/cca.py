"""Canonical correlation decoder with guards for short, rank-deficient trials."""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
from sklearn.cross_decomposition import CCA
from sklearn.preprocessing import StandardScaler

from aad_benchmark.data import Algorithm, Trial
from aad_benchmark.errors import ConfigurationError, NumericalDegeneracyWarning

from .base import BaseDecoder, PredictionResult, decide
from .features import build_lagged_features, ms_to_lag, pearson_corr

logger = logging.getLogger(__name__)

COMPONENT_POLICIES = ("first", "weighted")


@dataclass
class CCAConfig:
    """Configuration for the CCA decoder.

    The number of canonical pairs is bounded by ``max_components``, by
    ``max_components_ratio`` of the smallest of sample/feature counts, and by
    ``min_samples_per_component``; at least one pair is always kept.
    """

    max_lag_ms: float = 200.0
    max_components: int = 2
    max_components_ratio: float = 0.1
    min_samples_per_component: int = 50
    perturbation: float = 1e-6
    component_policy: str = "first"
    max_iter: int = 500
    random_state: int = 0

    def __post_init__(self) -> None:
        if self.component_policy not in COMPONENT_POLICIES:
            raise ConfigurationError(
                f"Unknown component_policy '{self.component_policy}'. Available: {COMPONENT_POLICIES}"
            )
        if self.max_lag_ms < 0:
            raise ConfigurationError("max_lag_ms must be >= 0")
        if self.max_components < 1 or self.min_samples_per_component < 1:
            raise ConfigurationError("max_components and min_samples_per_component must be >= 1")
        if not 0 < self.max_components_ratio <= 1:
            raise ConfigurationError("max_components_ratio must be in (0, 1]")
        if self.perturbation <= 0:
            raise ConfigurationError("perturbation must be > 0")


def safe_component_count(n_samples: int, n_eeg: int, n_env: int, config: CCAConfig) -> int:
    """Number of canonical pairs to retain for the given problem size."""

    smallest = min(n_samples, n_eeg, n_env)
    by_ratio = int(np.floor(smallest * config.max_components_ratio))
    by_samples = int(np.floor(n_samples / config.min_samples_per_component))
    count = min(config.max_components, by_ratio, by_samples)
    return int(max(1, min(count, smallest)))


def lagged_envelope(envelope: np.ndarray, max_lag: int) -> Tuple[np.ndarray, int]:
    """Envelope with lags 0..max_lag and the number of warm-up rows to drop."""

    return build_lagged_features(envelope, range(0, max_lag + 1)), max_lag


def _valid_columns(x: np.ndarray) -> np.ndarray:
    finite = np.all(np.isfinite(x), axis=0)
    std = np.zeros(x.shape[1])
    std[finite] = x[:, finite].std(axis=0)
    return finite & (std > 0)


def _is_rank_deficient(x: np.ndarray) -> bool:
    n, p = x.shape
    return n <= p or np.linalg.matrix_rank(x) < p


class DegenerateCCAModel:
    """Stand-in for a decomposition that failed; scores zero on every trial."""

    n_components = 0

    def __init__(self, reason: str = ""):
        self.reason = reason

    def score(self, eeg: np.ndarray, envelope: np.ndarray) -> float:
        return 0.0


class CCAModel:
    """CCA between EEG channels and a lagged envelope."""

    def __init__(self, config: CCAConfig, sample_rate: float):
        self.config = config
        self.max_lag = ms_to_lag(config.max_lag_ms, sample_rate)
        self.n_components = 0
        self.train_correlations: Optional[np.ndarray] = None
        self._eeg_mask: Optional[np.ndarray] = None
        self._env_mask: Optional[np.ndarray] = None
        self._eeg_scaler: Optional[StandardScaler] = None
        self._env_scaler: Optional[StandardScaler] = None
        self._cca: Optional[CCA] = None

    def _design(self, eeg: np.ndarray, envelope: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        lagged, warmup = lagged_envelope(envelope, self.max_lag)
        return np.asarray(eeg, dtype=np.float64)[warmup:], lagged[warmup:]

    def fit(self, eegs: Sequence[np.ndarray], envelopes: Sequence[np.ndarray]) -> "CCAModel | DegenerateCCAModel":
        """Fit on the concatenated trials.

        Returns ``self`` on success, or a :class:`DegenerateCCAModel` when the
        decomposition cannot be computed.
        """

        pairs = [self._design(e, v) for e, v in zip(eegs, envelopes)]
        X = np.concatenate([p[0] for p in pairs], axis=0)
        Y = np.concatenate([p[1] for p in pairs], axis=0)
        if X.shape[0] < 2:
            return self._degenerate(f"only {X.shape[0]} usable samples after dropping lag warm-up")

        self._eeg_mask = _valid_columns(X)
        self._env_mask = _valid_columns(Y)
        if not self._eeg_mask.any() or not self._env_mask.any():
            return self._degenerate("no finite, non-constant columns left")
        X = X[:, self._eeg_mask]
        Y = Y[:, self._env_mask]

        self._eeg_scaler = StandardScaler().fit(X)
        self._env_scaler = StandardScaler().fit(Y)
        X = self._eeg_scaler.transform(X)
        Y = self._env_scaler.transform(Y)

        if _is_rank_deficient(X) or _is_rank_deficient(Y):
            message = (
                f"Rank-deficient CCA input (n={X.shape[0]}, p_eeg={X.shape[1]}, p_env={Y.shape[1]}); "
                f"adding perturbation {self.config.perturbation:g}"
            )
            logger.info(message)
            warnings.warn(message, NumericalDegeneracyWarning, stacklevel=2)
            rng = np.random.default_rng(self.config.random_state)
            X = X + self.config.perturbation * rng.standard_normal(X.shape)
            Y = Y + self.config.perturbation * rng.standard_normal(Y.shape)

        self.n_components = safe_component_count(X.shape[0], X.shape[1], Y.shape[1], self.config)
        cca = CCA(n_components=self.n_components, scale=False, max_iter=self.config.max_iter)
        try:
            with np.errstate(divide="ignore", invalid="ignore"):
                cca.fit(X, Y)
                x_scores, y_scores = cca.transform(X, Y)
        except (ValueError, np.linalg.LinAlgError, FloatingPointError) as exc:
            return self._degenerate(f"decomposition failed: {exc}")
        if not (np.all(np.isfinite(x_scores)) and np.all(np.isfinite(y_scores))):
            return self._degenerate("decomposition produced non-finite canonical variates")

        self._cca = cca
        self.train_correlations = np.array(
            [abs(pearson_corr(x_scores[:, k], y_scores[:, k])) for k in range(self.n_components)]
        )
        return self

    def _degenerate(self, reason: str) -> DegenerateCCAModel:
        logger.warning("CCA falling back to zero-correlation model: %s", reason)
        warnings.warn(reason, NumericalDegeneracyWarning, stacklevel=3)
        return DegenerateCCAModel(reason)

    def canonical_correlations(self, eeg: np.ndarray, envelope: np.ndarray) -> np.ndarray:
        """Per-component |correlation| of the projected held-out data."""

        if self._cca is None:
            raise RuntimeError("CCAModel has not been fit yet.")
        X, Y = self._design(eeg, envelope)
        if X.shape[0] < 2:
            return np.zeros(self.n_components)
        X = self._eeg_scaler.transform(X[:, self._eeg_mask])
        Y = self._env_scaler.transform(Y[:, self._env_mask])
        with np.errstate(divide="ignore", invalid="ignore"):
            x_scores, y_scores = self._cca.transform(X, Y)
        return np.array([abs(pearson_corr(x_scores[:, k], y_scores[:, k])) for k in range(self.n_components)])

    def score(self, eeg: np.ndarray, envelope: np.ndarray) -> float:
        corrs = self.canonical_correlations(eeg, envelope)
        if self.config.component_policy == "first" or corrs.size == 1:
            value = float(corrs[0])
        else:
            weights = self.train_correlations
            total = float(weights.sum())
            value = float(np.dot(weights, corrs) / total) if total > 0 else float(corrs[0])
        return value if np.isfinite(value) else 0.0


class CCADecoder(BaseDecoder):
    """Attended vs unattended CCA comparison on a held-out trial."""

    algorithm = Algorithm.CCA

    def __init__(self, config: CCAConfig | None = None):
        super().__init__(config or CCAConfig())

    def fit_models(self, train_trials: Sequence[Trial]):
        if not train_trials:
            raise ValueError("CCA decoder needs at least one training trial")
        sample_rate = train_trials[0].sample_rate
        eegs = [t.eeg for t in train_trials]
        attended = CCAModel(self.config, sample_rate).fit(eegs, [t.attended_envelope for t in train_trials])
        unattended = CCAModel(self.config, sample_rate).fit(eegs, [t.unattended_envelope for t in train_trials])
        return attended, unattended

    def evaluate_fold(self, train_trials: Sequence[Trial], test_trial: Trial) -> List[PredictionResult]:
        attended_model, unattended_model = self.fit_models(train_trials)
        att = attended_model.score(test_trial.eeg, test_trial.attended_envelope)
        unatt = unattended_model.score(test_trial.eeg, test_trial.unattended_envelope)
        logger.debug("CCA %s: r_att=%.4f r_unatt=%.4f", test_trial.trial_id, att, unatt)
        return [decide(att, unatt, test_trial.trial_id)]


__all__ = [
    "CCAConfig",
    "CCAModel",
    "CCADecoder",
    "DegenerateCCAModel",
    "safe_component_count",
]
