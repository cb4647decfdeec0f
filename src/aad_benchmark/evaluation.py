"""Cross-validated evaluation of attention decoders."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, replace
from functools import reduce
from typing import Any, Dict, Iterable, Iterator, List, Mapping, NamedTuple, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from sklearn.model_selection import KFold, LeaveOneOut

from .data import Algorithm, ExcludedTrial, Subject, Trial
from .decoders import PredictionResult, build_decoder
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

CV_SCHEMES = ("leave_one_trial_out", "kfold")


@dataclass
class EvaluationConfig:
    cv_scheme: str = "leave_one_trial_out"
    n_splits: int = 5
    n_jobs: int = 1

    def __post_init__(self) -> None:
        if self.cv_scheme not in CV_SCHEMES:
            raise ConfigurationError(f"Unknown cv_scheme '{self.cv_scheme}'. Available: {CV_SCHEMES}")
        if self.cv_scheme == "kfold" and self.n_splits < 2:
            raise ConfigurationError("kfold needs n_splits >= 2")


class AccuracyKey(NamedTuple):
    subject_id: str
    algorithm: Algorithm
    configuration: str


@dataclass(frozen=True, order=True)
class UnitOutcome:
    """Correctness of one analysis unit (window or held-out trial)."""

    trial_id: str
    unit_index: int
    correctness: float
    confidence: float

    @classmethod
    def from_prediction(cls, result: PredictionResult) -> "UnitOutcome":
        return cls(result.trial_id, int(result.unit_index), float(result.correctness), float(result.confidence))


@dataclass(frozen=True)
class AccuracyRecord:
    """Accuracy of one algorithm on one subject under one configuration.

    ``accuracy`` is the mean over scored trials of each trial's fraction of
    correct units. It is NaN, with ``status == "excluded"``, when no trial
    could be scored, so an excluded subject never looks like 0% accuracy.
    """

    key: AccuracyKey
    accuracy: float
    outcomes: Tuple[UnitOutcome, ...] = ()
    trial_accuracies: Tuple[Tuple[str, float], ...] = ()
    n_folds: int = 0
    excluded: Tuple[ExcludedTrial, ...] = ()

    @classmethod
    def from_outcomes(
        cls,
        key: AccuracyKey,
        outcomes: Iterable[UnitOutcome],
        excluded: Iterable[ExcludedTrial] = (),
        n_folds: int = 0,
    ) -> "AccuracyRecord":
        outcomes = tuple(sorted(outcomes))
        per_trial: Dict[str, List[float]] = defaultdict(list)
        for outcome in outcomes:
            per_trial[outcome.trial_id].append(outcome.correctness)
        trial_accuracies = tuple((tid, float(np.mean(vals))) for tid, vals in sorted(per_trial.items()))
        accuracy = float(np.mean([acc for _, acc in trial_accuracies])) if trial_accuracies else float("nan")
        scored = set(per_trial)
        excluded = tuple(
            sorted({e for e in excluded if e.trial_id not in scored}, key=lambda e: (e.trial_id, e.reason))
        )
        return cls(key, accuracy, outcomes, trial_accuracies, int(n_folds), excluded)

    @property
    def subject_id(self) -> str:
        return self.key.subject_id

    @property
    def algorithm(self) -> Algorithm:
        return self.key.algorithm

    @property
    def configuration(self) -> str:
        return self.key.configuration

    @property
    def status(self) -> str:
        return "ok" if self.trial_accuracies else "excluded"

    @property
    def correctness(self) -> np.ndarray:
        return np.array([o.correctness for o in self.outcomes], dtype=np.float64)

    def combine(self, other: "AccuracyRecord") -> "AccuracyRecord":
        """Union of two partial records for the same key."""

        if other.key != self.key:
            raise ValueError(f"Cannot combine records for {self.key} and {other.key}")
        # accuracy is NaN for excluded records, so compare what it derives from.
        if (other.outcomes, other.excluded, other.n_folds) == (self.outcomes, self.excluded, self.n_folds):
            return self
        units: Dict[Tuple[str, int], UnitOutcome] = {}
        for outcome in self.outcomes + other.outcomes:
            unit = (outcome.trial_id, outcome.unit_index)
            if unit in units and units[unit] != outcome:
                raise ValueError(f"Conflicting outcomes for {self.key} unit {unit}")
            units[unit] = outcome
        return AccuracyRecord.from_outcomes(
            self.key,
            units.values(),
            excluded=self.excluded + other.excluded,
            n_folds=self.n_folds + other.n_folds,
        )


class ResultCollection(Mapping[AccuracyKey, AccuracyRecord]):
    """Accuracy records keyed by (subject, algorithm, configuration).

    Merging never mutates either operand and gives the same result in any
    order, so partial results from independent workers can be reduced freely.
    """

    def __init__(self, records: Iterable[AccuracyRecord] = ()):
        self._records: Dict[AccuracyKey, AccuracyRecord] = {}
        for record in records:
            existing = self._records.get(record.key)
            self._records[record.key] = record if existing is None else existing.combine(record)

    def __getitem__(self, key: AccuracyKey) -> AccuracyRecord:
        return self._records[key]

    def __iter__(self) -> Iterator[AccuracyKey]:
        return iter(sorted(self._records, key=lambda k: (k.configuration, k.algorithm.value, k.subject_id)))

    def __len__(self) -> int:
        return len(self._records)

    def merge(self, other: "ResultCollection") -> "ResultCollection":
        return ResultCollection(list(self.values()) + list(other.values()))

    __or__ = merge

    def select(self, algorithm: Algorithm | None = None, configuration: str | None = None) -> List[AccuracyRecord]:
        return [
            record
            for record in self.values()
            if (algorithm is None or record.algorithm == Algorithm(algorithm))
            and (configuration is None or record.configuration == configuration)
        ]

    @property
    def configurations(self) -> List[str]:
        return sorted({k.configuration for k in self._records})

    def to_frame(self) -> pd.DataFrame:
        rows = [
            {
                "subject": r.subject_id,
                "algorithm": r.algorithm.value,
                "configuration": r.configuration,
                "accuracy": r.accuracy,
                "status": r.status,
                "n_units": len(r.outcomes),
                "n_trials": len(r.trial_accuracies),
                "n_folds": r.n_folds,
                "n_excluded": len(r.excluded),
            }
            for r in self.values()
        ]
        columns = ["subject", "algorithm", "configuration", "accuracy", "status", "n_units", "n_trials", "n_folds", "n_excluded"]
        return pd.DataFrame(rows, columns=columns)


def build_folds(n_trials: int, config: EvaluationConfig) -> List[Tuple[np.ndarray, np.ndarray]]:
    """Train/test trial indices for the configured cross-validation scheme."""

    indices = np.arange(n_trials)
    if config.cv_scheme == "leave_one_trial_out":
        splitter = LeaveOneOut()
    else:
        splitter = KFold(n_splits=min(config.n_splits, n_trials))
    return list(splitter.split(indices))


def _evaluate_fold(
    algorithm: Algorithm, params: Any, train_trials: Sequence[Trial], test_trial: Trial
) -> List[PredictionResult]:
    # A new decoder per call: nothing fitted in one fold is visible to another.
    decoder = build_decoder(algorithm, params)
    return decoder.evaluate_fold(train_trials, test_trial)


def run_decoder(
    subject: Subject,
    algorithm: Algorithm | str,
    params: Any = None,
    configuration: str = "default",
    evaluation: EvaluationConfig | None = None,
) -> AccuracyRecord:
    """Cross-validate one decoder on one subject.

    Parameters
    ----------
    subject:
        Aligned trials of the subject.
    algorithm:
        Which decoder to run.
    params:
        Decoder config dataclass or mapping (``None`` for defaults).
    configuration:
        Name of the channel configuration the subject data belongs to.
    evaluation:
        Cross-validation scheme and parallelism.

    Returns
    -------
    AccuracyRecord
        Accuracy plus the per-unit correctness sequence.
    """

    evaluation = evaluation or EvaluationConfig()
    decoder = build_decoder(algorithm, params)
    algorithm = decoder.algorithm
    params = decoder.config
    key = AccuracyKey(subject.subject_id, algorithm, configuration)
    trials = list(subject.trials)
    excluded = list(subject.excluded)

    if not decoder.requires_training:
        jobs = [((), trial) for trial in trials]
        n_folds = len(trials)
    elif len(trials) < 2:
        logger.warning(
            "Subject %s: %s needs at least 2 trials for cross-validation, found %d",
            subject.subject_id,
            algorithm.value,
            len(trials),
        )
        excluded.extend(ExcludedTrial(t.trial_id, "no training trials available") for t in trials)
        return AccuracyRecord.from_outcomes(key, (), excluded=excluded)
    else:
        folds = build_folds(len(trials), evaluation)
        jobs = [
            ([trials[i] for i in train_idx], trials[j])
            for train_idx, test_idx in folds
            for j in test_idx
        ]
        n_folds = len(folds)

    fold_results = Parallel(n_jobs=evaluation.n_jobs)(
        delayed(_evaluate_fold)(algorithm, params, train, test) for train, test in jobs
    )

    outcomes: List[UnitOutcome] = []
    for (_, test_trial), results in zip(jobs, fold_results):
        if not results:
            excluded.append(ExcludedTrial(test_trial.trial_id, "no analysis units (trial shorter than one window)"))
            continue
        outcomes.extend(UnitOutcome.from_prediction(r) for r in results)

    record = AccuracyRecord.from_outcomes(key, outcomes, excluded=excluded, n_folds=n_folds)
    logger.info(
        "Subject %s | %s | %s: accuracy=%.3f over %d trials (%d units, %d folds, %d excluded)",
        subject.subject_id,
        algorithm.value,
        configuration,
        record.accuracy,
        len(record.trial_accuracies),
        len(record.outcomes),
        record.n_folds,
        len(record.excluded),
    )
    return record


def run_benchmark(
    subjects_by_configuration: Mapping[str, Sequence[Subject]],
    algorithms: Sequence[Algorithm | str] = tuple(Algorithm),
    params: Optional[Mapping[Algorithm, Any]] = None,
    evaluation: EvaluationConfig | None = None,
) -> ResultCollection:
    """Evaluate every (configuration, subject, algorithm) and merge the records.

    Units are independent and dispatched with joblib; folds inside a unit run
    sequentially to avoid nested worker pools.
    """

    evaluation = evaluation or EvaluationConfig()
    params = {Algorithm(k): v for k, v in (params or {}).items()}
    inner = replace(evaluation, n_jobs=1)
    tasks = [
        (subject, Algorithm(algorithm), configuration)
        for configuration, subjects in sorted(subjects_by_configuration.items())
        for subject in subjects
        for algorithm in algorithms
    ]
    logger.info("Running %d evaluation units with n_jobs=%d", len(tasks), evaluation.n_jobs)
    records = Parallel(n_jobs=evaluation.n_jobs)(
        delayed(run_decoder)(subject, algorithm, params.get(algorithm), configuration, inner)
        for subject, algorithm, configuration in tasks
    )
    partials = [ResultCollection([record]) for record in records]
    return reduce(ResultCollection.merge, partials, ResultCollection())


__all__ = [
    "EvaluationConfig",
    "AccuracyKey",
    "UnitOutcome",
    "AccuracyRecord",
    "ResultCollection",
    "build_folds",
    "run_decoder",
    "run_benchmark",
]
