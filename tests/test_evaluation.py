"""Tests for cross-validation, accuracy records and result merging."""

import math

import numpy as np
import pytest

from aad_benchmark import evaluation
from aad_benchmark.data import Algorithm, ExcludedTrial, Subject
from aad_benchmark.decoders.trf import TRFDecoder
from aad_benchmark.errors import ConfigurationError
from aad_benchmark.evaluation import (
    AccuracyKey,
    AccuracyRecord,
    EvaluationConfig,
    ResultCollection,
    UnitOutcome,
    build_folds,
    run_benchmark,
    run_decoder,
)


def test_leave_one_out_gives_one_fold_per_trial(tracking_subject) -> None:
    """Four trials under leave-one-trial-out: four folds, one outcome each."""
    record = run_decoder(tracking_subject(n_trials=4), "trf")

    assert record.n_folds == 4
    assert len(record.outcomes) == 4
    assert record.status == "ok"
    assert [tid for tid, _ in record.trial_accuracies] == [f"s1-t{i}" for i in range(4)]


def test_kfold_scheme(tracking_subject) -> None:
    """KFold still scores every trial exactly once."""
    record = run_decoder(tracking_subject(n_trials=4), "trf", evaluation=EvaluationConfig("kfold", n_splits=2))

    assert record.n_folds == 2
    assert sorted(o.trial_id for o in record.outcomes) == [f"s1-t{i}" for i in range(4)]


def test_build_folds_never_trains_on_the_test_trial() -> None:
    """Train and test indices are disjoint in every fold."""
    for train, test in build_folds(5, EvaluationConfig()):
        assert not set(train) & set(test)
        assert len(train) == 4


def test_unknown_cv_scheme() -> None:
    """Only leave-one-trial-out and kfold are available."""
    with pytest.raises(ConfigurationError):
        EvaluationConfig(cv_scheme="bootstrap")


def test_each_fold_gets_a_fresh_decoder(monkeypatch, tracking_subject) -> None:
    """No decoder instance is reused between folds."""
    built = []
    original = evaluation.build_decoder

    def _tracking_build(algorithm, params=None):
        decoder = original(algorithm, params)
        built.append(decoder)
        return decoder

    monkeypatch.setattr(evaluation, "build_decoder", _tracking_build)
    run_decoder(tracking_subject(n_trials=4), "trf")

    # One instance to resolve the config, then one per fold.
    assert len(built) == 5
    assert len({id(d) for d in built}) == 5


def test_folds_only_see_their_own_training_trials(monkeypatch, tracking_subject) -> None:
    """Corrupting the model of folds that lack t0 changes only those folds' outcomes."""
    original = TRFDecoder.fit_models

    def _fit_models(self, train_trials):
        attended, unattended = original(self, train_trials)
        if "s1-t0" not in {t.trial_id for t in train_trials}:
            attended.weights = -attended.weights
        return attended, unattended

    monkeypatch.setattr(TRFDecoder, "fit_models", _fit_models)
    record = run_decoder(tracking_subject(n_trials=4), "trf")

    assert dict(record.trial_accuracies) == {"s1-t0": 0.0, "s1-t1": 1.0, "s1-t2": 1.0, "s1-t3": 1.0}


@pytest.mark.parametrize("algorithm", list(Algorithm))
def test_identical_envelopes_score_chance(ambiguous_subject, algorithm) -> None:
    """When attended and unattended envelopes coincide every decoder sits at 50%."""
    record = run_decoder(ambiguous_subject(n_trials=2), algorithm)

    assert record.accuracy == pytest.approx(0.5)


@pytest.mark.parametrize("algorithm", [Algorithm.CORRELATION, Algorithm.TRF])
def test_tracking_eeg_scores_perfectly(tracking_subject, algorithm) -> None:
    """EEG that follows the attended envelope is decoded on every unit."""
    record = run_decoder(tracking_subject(n_trials=4), algorithm)

    assert record.accuracy == 1.0


def test_correlation_runs_per_trial_without_training(tracking_subject) -> None:
    """Training-free decoding works even with a single trial."""
    record = run_decoder(tracking_subject(n_trials=1), "correlation")

    assert record.n_folds == 1
    assert len(record.outcomes) == 51


def test_trial_without_windows_is_excluded(tracking_subject) -> None:
    """A subject whose only trial is shorter than one window has no accuracy."""
    record = run_decoder(tracking_subject(n_trials=1, seconds=8.0), "correlation")

    assert math.isnan(record.accuracy)
    assert record.status == "excluded"
    assert [e.trial_id for e in record.excluded] == ["s1-t0"]


def test_single_trial_cannot_train(tracking_subject, caplog) -> None:
    """Trained decoders exclude subjects with fewer than two trials."""
    record = run_decoder(tracking_subject(n_trials=1), "cca")

    assert record.status == "excluded"
    assert record.excluded[0].reason == "no training trials available"
    assert "needs at least 2 trials" in caplog.text


def test_alignment_exclusions_are_carried(tracking_subject) -> None:
    """Trials dropped before evaluation stay visible on the record."""
    subject = tracking_subject(n_trials=2)
    subject = Subject(subject.subject_id, subject.trials, (ExcludedTrial("s1-t9", "envelope not found"),))

    record = run_decoder(subject, "correlation")

    assert record.status == "ok"
    assert [e.trial_id for e in record.excluded] == ["s1-t9"]


def _partial(subject_id: str, correct: list) -> AccuracyRecord:
    key = AccuracyKey(subject_id, Algorithm.CORRELATION, "ch2")
    outcomes = [UnitOutcome(f"{subject_id}-t{i // 2}", i % 2, c, 0.1) for i, c in enumerate(correct)]
    return AccuracyRecord.from_outcomes(key, outcomes, n_folds=1)


def test_accuracy_is_mean_of_trial_accuracies() -> None:
    """Trials weigh equally regardless of how many windows they have."""
    key = AccuracyKey("s1", Algorithm.CORRELATION, "ch2")
    outcomes = [UnitOutcome("a", 0, 1.0, 0.1), UnitOutcome("a", 1, 1.0, 0.1), UnitOutcome("a", 2, 1.0, 0.1)]
    outcomes.append(UnitOutcome("b", 0, 0.0, 0.1))

    record = AccuracyRecord.from_outcomes(key, outcomes)

    assert record.accuracy == pytest.approx(0.5)


def test_partial_records_combine_to_the_whole() -> None:
    """Splitting a record's units and recombining restores its accuracy."""
    whole = _partial("s1", [1.0, 0.0, 1.0, 1.0])
    first = AccuracyRecord.from_outcomes(whole.key, whole.outcomes[:2], n_folds=1)
    second = AccuracyRecord.from_outcomes(whole.key, whole.outcomes[2:], n_folds=1)

    combined = first.combine(second)

    assert combined.accuracy == whole.accuracy
    assert combined.outcomes == whole.outcomes
    assert combined.n_folds == 2


def test_conflicting_units_cannot_combine() -> None:
    """The same unit with two different outcomes is an error."""
    a = _partial("s1", [1.0])
    b = _partial("s1", [0.0])

    with pytest.raises(ValueError, match="Conflicting"):
        a.combine(b)


def test_merge_is_order_independent() -> None:
    """Merging partial collections yields the same records in any order."""
    parts = [
        ResultCollection([_partial("s1", [1.0, 0.0])]),
        ResultCollection([_partial("s2", [1.0, 1.0])]),
        ResultCollection([_partial("s1", [1.0, 0.0])]),
    ]

    forward = parts[0] | parts[1] | parts[2]
    backward = parts[2].merge(parts[1]).merge(parts[0])

    assert dict(forward) == dict(backward)
    assert len(forward) == 2
    assert forward.to_frame().equals(backward.to_frame())


def test_merging_duplicate_excluded_records_is_idempotent() -> None:
    """Two equal excluded records (NaN accuracy) merge to one without double-counting folds."""
    key = AccuracyKey("s1", Algorithm.TRF, "ch2")
    skipped = [ExcludedTrial("s1-t0", "envelope not found")]
    first = AccuracyRecord.from_outcomes(key, (), excluded=skipped, n_folds=1)
    second = AccuracyRecord.from_outcomes(key, (), excluded=list(skipped), n_folds=1)

    combined = first.combine(second)
    merged = ResultCollection([first]) | ResultCollection([second])

    assert combined.status == "excluded"
    assert combined.n_folds == 1
    assert combined.excluded == first.excluded
    assert merged[key].n_folds == 1
    assert (merged | ResultCollection([first]))[key].n_folds == 1


def test_run_benchmark_covers_every_unit(tracking_subject) -> None:
    """One record per configuration, subject and algorithm, with per-algorithm params."""
    subjects = [tracking_subject("s1", n_trials=2), tracking_subject("s2", n_trials=2, seed=8)]

    results = run_benchmark(
        {"ch2": subjects, "ch8": subjects},
        algorithms=["correlation", "trf"],
        params={"correlation": {"window_seconds": 5.0}},
    )

    assert len(results) == 8
    assert results.configurations == ["ch2", "ch8"]
    frame = results.to_frame()
    assert set(frame["status"]) == {"ok"}
    correlation_units = frame.loc[frame["algorithm"] == "correlation", "n_units"]
    assert (correlation_units == 2 * 56).all()
    assert len(results.select(algorithm="trf", configuration="ch8")) == 2


def test_to_frame_columns(tracking_subject) -> None:
    """The tabular view carries one row per record."""
    frame = ResultCollection([run_decoder(tracking_subject(), "correlation", configuration="ch2")]).to_frame()

    assert list(frame.columns)[:5] == ["subject", "algorithm", "configuration", "accuracy", "status"]
    assert frame.loc[0, "n_trials"] == 4
    assert np.isclose(frame.loc[0, "accuracy"], 1.0)
