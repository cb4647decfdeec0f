"""Per-configuration summaries and paired comparisons of decoding accuracy."""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd
from scipy import stats

from .data import Algorithm
from .errors import StatisticalInputError
from .evaluation import AccuracyRecord, ResultCollection

logger = logging.getLogger(__name__)

INSUFFICIENT_DATA = "insufficient data"


@dataclass(frozen=True)
class PairedTestResult:
    mean_diff: float
    t_statistic: float
    p_value: float
    effect_size: float
    ci_low: float = float("nan")
    ci_high: float = float("nan")
    degenerate: bool = False


@dataclass(frozen=True)
class ComparisonResult:
    """Paired comparison of two configurations for one algorithm.

    ``mean_diff`` and ``effect_size`` are signed as configuration B minus
    configuration A; ``ci_low``/``ci_high`` bound ``mean_diff`` at confidence
    ``1 - alpha``. With fewer than two paired subjects ``status`` is
    ``"insufficient data"`` and every statistic is ``None``.
    """

    algorithm: Algorithm
    configuration_a: Optional[str]
    configuration_b: Optional[str]
    n_pairs: int
    subjects: Tuple[str, ...]
    status: str
    mean_a: Optional[float] = None
    std_a: Optional[float] = None
    mean_b: Optional[float] = None
    std_b: Optional[float] = None
    mean_diff: Optional[float] = None
    t_statistic: Optional[float] = None
    p_value: Optional[float] = None
    effect_size: Optional[float] = None
    ci_low: Optional[float] = None
    ci_high: Optional[float] = None
    significant: Optional[bool] = None

    def as_dict(self) -> dict:
        out = asdict(self)
        out["algorithm"] = self.algorithm.value
        return out


def paired_comparison(
    values_a: Iterable[float], values_b: Iterable[float], confidence_level: float = 0.95
) -> PairedTestResult:
    """Paired t-test, confidence interval and Cohen's d_z of ``values_b - values_a``.

    Raises
    ------
    StatisticalInputError
        If the vectors differ in length or hold fewer than two pairs.
    """

    a = np.asarray(list(values_a), dtype=np.float64)
    b = np.asarray(list(values_b), dtype=np.float64)
    if a.shape != b.shape:
        raise StatisticalInputError(f"Unpaired inputs: {a.size} vs {b.size} values")
    if a.size < 2:
        raise StatisticalInputError(f"Paired comparison needs at least 2 pairs, got {a.size}")
    if not (np.all(np.isfinite(a)) and np.all(np.isfinite(b))):
        raise StatisticalInputError("Paired comparison inputs must be finite")

    diff = b - a
    mean_diff = float(diff.mean())
    sd = float(diff.std(ddof=1))
    if sd == 0:
        # Identical differences: no variance to test against.
        effect = 0.0 if mean_diff == 0 else math.copysign(math.inf, mean_diff)
        return PairedTestResult(mean_diff, float("nan"), float("nan"), effect, degenerate=True)
    test = stats.ttest_rel(b, a)
    ci = test.confidence_interval(confidence_level=confidence_level)
    return PairedTestResult(
        mean_diff,
        float(test.statistic),
        float(test.pvalue),
        mean_diff / sd,
        ci_low=float(ci.low),
        ci_high=float(ci.high),
    )


def _as_records(records) -> List[AccuracyRecord]:
    if isinstance(records, ResultCollection):
        return list(records.values())
    return list(records)


def _scored_by_algorithm(records: List[AccuracyRecord]) -> Dict[Algorithm, Dict[str, float]]:
    out: Dict[Algorithm, Dict[str, float]] = {}
    for record in records:
        scores = out.setdefault(record.algorithm, {})
        if record.status == "ok":
            scores[record.subject_id] = record.accuracy
    return out


def _configuration_name(records: List[AccuracyRecord]) -> Optional[str]:
    names = sorted({r.configuration for r in records})
    if len(names) > 1:
        raise ValueError(f"Records span several configurations: {names}")
    return names[0] if names else None


def _mean_std(values: np.ndarray) -> Tuple[float, float]:
    std = float(values.std(ddof=1)) if values.size > 1 else float("nan")
    return float(values.mean()), std


def compare_configurations(records_a, records_b, alpha: float = 0.05) -> Dict[Algorithm, ComparisonResult]:
    """Compare two channel configurations per algorithm, paired by subject.

    Parameters
    ----------
    records_a / records_b:
        Accuracy records (or a ``ResultCollection``) of configuration A and B.
        Subjects excluded in either configuration are left out of the pairing.
    alpha:
        Significance level for the ``significant`` flag.

    Returns
    -------
    Dict[Algorithm, ComparisonResult]
        One result per algorithm present in either input.
    """

    if not 0 < alpha < 1:
        raise ValueError(f"alpha must be in (0, 1), got {alpha}")
    records_a = _as_records(records_a)
    records_b = _as_records(records_b)
    config_a = _configuration_name(records_a)
    config_b = _configuration_name(records_b)
    scored_a = _scored_by_algorithm(records_a)
    scored_b = _scored_by_algorithm(records_b)

    results: Dict[Algorithm, ComparisonResult] = {}
    for algorithm in sorted(set(scored_a) | set(scored_b), key=lambda a: a.value):
        acc_a = scored_a.get(algorithm, {})
        acc_b = scored_b.get(algorithm, {})
        subjects = tuple(sorted(set(acc_a) & set(acc_b)))
        a = np.array([acc_a[s] for s in subjects], dtype=np.float64)
        b = np.array([acc_b[s] for s in subjects], dtype=np.float64)
        try:
            test = paired_comparison(a, b, confidence_level=1 - alpha)
        except StatisticalInputError as exc:
            logger.warning("%s: %s vs %s: %s (%s)", algorithm.value, config_a, config_b, INSUFFICIENT_DATA, exc)
            results[algorithm] = ComparisonResult(
                algorithm, config_a, config_b, len(subjects), subjects, INSUFFICIENT_DATA
            )
            continue
        mean_a, std_a = _mean_std(a)
        mean_b, std_b = _mean_std(b)
        results[algorithm] = ComparisonResult(
            algorithm=algorithm,
            configuration_a=config_a,
            configuration_b=config_b,
            n_pairs=len(subjects),
            subjects=subjects,
            status="degenerate" if test.degenerate else "ok",
            mean_a=mean_a,
            std_a=std_a,
            mean_b=mean_b,
            std_b=std_b,
            mean_diff=test.mean_diff,
            t_statistic=test.t_statistic,
            p_value=test.p_value,
            effect_size=test.effect_size,
            ci_low=test.ci_low,
            ci_high=test.ci_high,
            significant=None if test.degenerate else bool(test.p_value < alpha),
        )
        logger.info(
            "%s: %s %.3f±%.3f vs %s %.3f±%.3f, diff=%.3f, p=%.4g, d_z=%.3f (n=%d)",
            algorithm.value,
            config_a,
            mean_a,
            std_a,
            config_b,
            mean_b,
            std_b,
            test.mean_diff,
            test.p_value,
            test.effect_size,
            len(subjects),
        )
    return results


def summarize_records(records) -> pd.DataFrame:
    """Mean/std of per-subject accuracy per algorithm and configuration.

    Excluded records are not averaged; they are counted in ``n_excluded``.
    """

    frame = ResultCollection(_as_records(records)).to_frame()
    columns = ["algorithm", "configuration", "mean", "std", "n_subjects", "n_excluded"]
    if frame.empty:
        return pd.DataFrame(columns=columns)
    frame["is_excluded"] = frame["status"] == "excluded"
    grouped = frame.groupby(["algorithm", "configuration"], sort=True)
    summary = grouped.agg(
        mean=("accuracy", "mean"),
        std=("accuracy", "std"),
        n_subjects=("accuracy", "count"),
        n_excluded=("is_excluded", "sum"),
    ).reset_index()
    summary["n_excluded"] = summary["n_excluded"].astype(int)
    return summary[columns]


def comparisons_to_frame(results: Dict[Algorithm, ComparisonResult]) -> pd.DataFrame:
    return pd.DataFrame([results[a].as_dict() for a in sorted(results, key=lambda a: a.value)])


__all__ = [
    "INSUFFICIENT_DATA",
    "PairedTestResult",
    "ComparisonResult",
    "paired_comparison",
    "compare_configurations",
    "summarize_records",
    "comparisons_to_frame",
]
