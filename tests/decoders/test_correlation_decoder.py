"""Tests for the windowed cross-correlation decoder."""

import logging

import pytest

from aad_benchmark.data import Prediction
from aad_benchmark.decoders import CorrelationConfig, CorrelationDecoder, build_decoder
from aad_benchmark.decoders.base import decide
from aad_benchmark.errors import ConfigurationError


def test_decide_requires_a_strictly_larger_attended_score() -> None:
    """Equal scores are a tie scored as chance, not a win."""
    assert decide(0.3, 0.2, "t").prediction is Prediction.ATTENDED
    assert decide(0.2, 0.3, "t").prediction is Prediction.UNATTENDED
    tie = decide(0.25, 0.25, "t")
    assert tie.tie and tie.correctness == 0.5
    assert decide(0.3, 0.2, "t").confidence == pytest.approx(0.1)


def test_non_finite_scores_never_win() -> None:
    """A NaN score counts as zero."""
    assert decide(float("nan"), 0.1, "t").prediction is Prediction.UNATTENDED


def test_one_prediction_per_window(tracking_subject) -> None:
    """60 s with a 10 s window and 1 s step gives 51 windows."""
    trial = tracking_subject(n_trials=1).trials[0]

    results = CorrelationDecoder().evaluate_trial(trial)

    assert len(results) == 51
    assert [r.unit_index for r in results] == list(range(51))
    assert all(r.confidence >= 0 for r in results)


def test_tracking_eeg_is_always_decoded(tracking_subject) -> None:
    """EEG that is a zero-lag copy of the attended envelope wins every window."""
    trial = tracking_subject(n_trials=1).trials[0]

    results = CorrelationDecoder().evaluate_fold([], trial)

    assert all(r.prediction is Prediction.ATTENDED for r in results)
    assert results[0].attended_score == pytest.approx(1.0)


def test_trial_shorter_than_window_yields_no_windows(tracking_subject, caplog) -> None:
    """No windows means no score, with a warning."""
    trial = tracking_subject(n_trials=1, seconds=8.0).trials[0]

    with caplog.at_level(logging.WARNING):
        results = CorrelationDecoder().evaluate_trial(trial)

    assert results == []
    assert "shorter than one" in caplog.text


def test_build_decoder_accepts_mappings() -> None:
    """The factory turns plain mappings into the decoder's config."""
    decoder = build_decoder("correlation", {"window_seconds": 5.0})

    assert isinstance(decoder, CorrelationDecoder)
    assert decoder.config.window_seconds == 5.0
    assert decoder.windows(32.0).size_samples == 160


def test_invalid_window_is_rejected() -> None:
    """A zero-length window is a configuration error."""
    with pytest.raises(ConfigurationError):
        CorrelationConfig(window_seconds=0.0)


def test_unknown_algorithm() -> None:
    """Unknown algorithm names raise KeyError listing the options."""
    with pytest.raises(KeyError, match="Available"):
        build_decoder("mutual_information")
