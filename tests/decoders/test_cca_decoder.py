"""Tests for the CCA decoder and its numerical guards."""

import numpy as np
import pytest

from aad_benchmark.data import Prediction
from aad_benchmark.decoders import cca as mod
from aad_benchmark.decoders.cca import CCAConfig, CCADecoder, CCAModel, DegenerateCCAModel, safe_component_count
from aad_benchmark.errors import ConfigurationError, NumericalDegeneracyWarning


def test_component_count_bounds() -> None:
    """Configured maximum, feature ratio and samples-per-component all cap the count."""
    cfg = CCAConfig(max_components=2, max_components_ratio=0.1, min_samples_per_component=50)

    assert safe_component_count(10_000, 64, 70, cfg) == 2
    assert safe_component_count(10_000, 4, 7, cfg) == 1
    assert safe_component_count(60, 64, 70, cfg) == 1
    assert safe_component_count(10_000, 30, 30, CCAConfig(max_components=5)) == 3


def test_fewer_samples_than_features_gives_finite_prediction(trial_factory, envelope_factory) -> None:
    """Short trials with many channels are perturbed, not crashed."""
    rng = np.random.default_rng(5)
    n, channels = 64, 128
    trials = [
        trial_factory(
            f"t{i}",
            rng.standard_normal((n, channels)),
            envelope_factory(rng, n),
            envelope_factory(rng, n),
        )
        for i in range(2)
    ]

    with pytest.warns(NumericalDegeneracyWarning):
        (result,) = CCADecoder().evaluate_fold(trials[:1], trials[1])

    assert np.isfinite(result.confidence)
    assert np.isfinite(result.attended_score) and np.isfinite(result.unattended_score)
    assert result.prediction in set(Prediction)


def test_identical_envelopes_tie(ambiguous_subject) -> None:
    """The same inputs give the same canonical correlations for both labels."""
    train, test = ambiguous_subject(n_trials=2).trials

    (result,) = CCADecoder().evaluate_fold([train], test)

    assert result.prediction is Prediction.UNDECIDED


def test_tracking_eeg_is_decoded(tracking_subject) -> None:
    """EEG driven by the attended envelope correlates better with it."""
    trials = tracking_subject(n_trials=3).trials

    (result,) = CCADecoder().evaluate_fold(trials[:2], trials[2])

    assert result.prediction is Prediction.ATTENDED


def test_weighted_policy_scores_are_bounded(ambiguous_subject) -> None:
    """Correlation-weighted aggregation stays within [0, 1]."""
    trials = ambiguous_subject(n_trials=3, n_channels=40).trials
    cfg = CCAConfig(component_policy="weighted", max_components=3, max_components_ratio=1.0)

    model = CCAModel(cfg, 32.0).fit([t.eeg for t in trials[:2]], [t.attended_envelope for t in trials[:2]])
    score = model.score(trials[2].eeg, trials[2].attended_envelope)

    assert model.n_components == 3
    assert 0.0 <= score <= 1.0


def test_failed_decomposition_falls_back_to_zero_model(monkeypatch, tracking_subject) -> None:
    """A decomposition error yields a zero-score model, and two of them tie."""

    def _explode(self, X, Y):
        raise np.linalg.LinAlgError("singular")

    monkeypatch.setattr(mod.CCA, "fit", _explode)
    trials = tracking_subject(n_trials=2).trials

    with pytest.warns(NumericalDegeneracyWarning):
        attended, unattended = CCADecoder().fit_models(trials[:1])
    assert isinstance(attended, DegenerateCCAModel)
    assert attended.score(trials[1].eeg, trials[1].attended_envelope) == 0.0

    with pytest.warns(NumericalDegeneracyWarning):
        (result,) = CCADecoder().evaluate_fold(trials[:1], trials[1])
    assert result.prediction is Prediction.UNDECIDED


def test_constant_channels_are_dropped(tracking_subject) -> None:
    """Zero-variance EEG columns are masked out before fitting."""
    trial = tracking_subject(n_trials=1).trials[0]
    eeg = np.column_stack([trial.eeg, np.ones(trial.n_samples)])

    model = CCAModel(CCAConfig(), 32.0).fit([eeg], [trial.attended_envelope])

    assert isinstance(model, CCAModel)
    assert model._eeg_mask.tolist() == [True] * trial.n_channels + [False]


def test_unknown_component_policy() -> None:
    """Only 'first' and 'weighted' aggregation are supported."""
    with pytest.raises(ConfigurationError):
        CCAConfig(component_policy="sum")
