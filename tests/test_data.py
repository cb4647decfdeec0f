"""Tests for the in-memory trial and envelope records."""

import logging

import numpy as np
import pytest

from aad_benchmark.data import AttentionLabel, Envelope, RawTrial, Subject, Trial, summarize_trials
from aad_benchmark.errors import DataError


def test_trial_rejects_length_mismatch(trial_factory) -> None:
    """EEG and both envelopes must share one time axis."""
    with pytest.raises(DataError, match="length mismatch"):
        trial_factory("t0", np.zeros((10, 2)), np.ones((10, 1)), np.ones((9, 1)))


def test_trial_rejects_non_finite_values(trial_factory) -> None:
    """NaN anywhere in the aligned series is a data error."""
    eeg = np.zeros((10, 2))
    eeg[3, 1] = np.nan

    with pytest.raises(DataError, match="non-finite"):
        trial_factory("t0", eeg, np.ones((10, 1)), np.ones((10, 1)))


def test_trial_arrays_are_read_only(trial_factory) -> None:
    """Downstream code cannot modify a trial in place."""
    trial = trial_factory("t0", np.zeros((10, 2)), np.ones(10), np.ones(10))

    assert trial.attended_envelope.shape == (10, 1)
    with pytest.raises(ValueError):
        trial.eeg[0, 0] = 1.0


def test_envelope_must_be_nonnegative() -> None:
    """Negative envelope samples are rejected."""
    with pytest.raises(DataError, match="negative"):
        Envelope(np.array([0.1, -0.2, 0.3]), 32.0, "a")


def test_envelope_truncation() -> None:
    """Truncation shortens but never pads."""
    env = Envelope(np.ones((20, 2)), 32.0, "a", degraded=True)

    short = env.truncate(5)

    assert short.n_samples == 5 and short.degraded
    with pytest.raises(DataError):
        env.truncate(30)


def test_raw_trial_label_must_be_valid() -> None:
    """Unknown attention labels are data errors, not silent defaults."""
    with pytest.raises(DataError, match="invalid attention label"):
        RawTrial(np.zeros((4, 2)), 128.0, ("a", "b"), "attended_middle", "t0")


def test_subject_rejects_duplicate_trial_ids(trial_factory) -> None:
    """Trial ids identify folds and must be unique."""
    trial = trial_factory("t0", np.zeros((10, 2)), np.ones(10), np.ones(10))

    with pytest.raises(DataError, match="duplicate"):
        Subject("s1", (trial, trial))


def test_summarize_trials_drops_short_trials(trial_factory, caplog) -> None:
    """Short trials move to the excluded list and the QC summary is logged."""
    long_trial = trial_factory("t0", np.zeros((64, 2)), np.ones(64), np.ones(64))
    short_trial = trial_factory("t1", np.zeros((16, 2)), np.ones(16), np.ones(16), AttentionLabel.ATTENDED_RIGHT)

    with caplog.at_level(logging.INFO):
        (subject,) = summarize_trials([Subject("s1", (long_trial, short_trial))], min_samples=32)

    assert [t.trial_id for t in subject.trials] == ["t0"]
    assert subject.excluded[0].trial_id == "t1"
    assert "flat envelopes att=1" in caplog.text
