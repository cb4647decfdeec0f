"""Core in-memory records: envelopes, trials and subjects."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Sequence, Tuple

import numpy as np

from .errors import DataError

logger = logging.getLogger(__name__)


class Algorithm(str, Enum):
    CORRELATION = "correlation"
    TRF = "trf"
    CCA = "cca"


class AttentionLabel(str, Enum):
    ATTENDED_LEFT = "attended_left"
    ATTENDED_RIGHT = "attended_right"


class Prediction(str, Enum):
    ATTENDED = "attended"
    UNATTENDED = "unattended"
    # Equal scores: counted as chance, never as a win for either side.
    UNDECIDED = "undecided"


def _frozen_array(values: np.ndarray, name: str) -> np.ndarray:
    arr = np.array(values, dtype=np.float64, copy=True)
    if arr.ndim == 1:
        arr = arr[:, None]
    if arr.ndim != 2:
        raise DataError(f"{name} must be a 2D array (T, D), got shape {arr.shape}")
    arr.flags.writeable = False
    return arr


@dataclass(frozen=True)
class Envelope:
    """Nonnegative multi-band envelope at a fixed sample rate.

    Attributes
    ----------
    samples:
        Array of shape (T, B); one column per sub-band.
    sample_rate:
        Sampling rate in Hz.
    stimulus_id:
        Identifier of the audio stream the envelope was computed from.
    degraded:
        ``True`` when the extractor fell back to a less precise filter bank.
    """

    samples: np.ndarray
    sample_rate: float
    stimulus_id: str | None = None
    degraded: bool = False

    def __post_init__(self) -> None:
        samples = _frozen_array(self.samples, "Envelope samples")
        if not np.all(np.isfinite(samples)):
            raise DataError(f"Envelope {self.stimulus_id!r} contains non-finite values")
        if np.any(samples < 0):
            raise DataError(f"Envelope {self.stimulus_id!r} contains negative values")
        object.__setattr__(self, "samples", samples)

    @property
    def n_samples(self) -> int:
        return int(self.samples.shape[0])

    @property
    def n_bands(self) -> int:
        return int(self.samples.shape[1])

    def truncate(self, n_samples: int) -> "Envelope":
        if n_samples > self.n_samples:
            raise DataError(
                f"Envelope {self.stimulus_id!r} has {self.n_samples} samples, "
                f"{n_samples} requested"
            )
        return Envelope(self.samples[:n_samples], self.sample_rate, self.stimulus_id, self.degraded)


@dataclass
class RawTrial:
    """Native-rate EEG trial as returned by the loading layer.

    ``stimulus_ids`` holds the (left, right) stimulus identifiers; the label
    says which of the two was attended and must be explicit.
    """

    eeg: np.ndarray
    sample_rate: float
    stimulus_ids: Tuple[str, str]
    attention_label: AttentionLabel
    trial_id: str
    rereference: str | int | None = None
    channel_names: Sequence[str] | None = None

    def __post_init__(self) -> None:
        self.eeg = np.asarray(self.eeg, dtype=np.float64)
        if self.eeg.ndim != 2:
            raise DataError(f"Trial {self.trial_id}: EEG must be 2D (T, C), got {self.eeg.shape}")
        if len(self.stimulus_ids) != 2:
            raise DataError(f"Trial {self.trial_id}: expected (left, right) stimulus ids")
        try:
            self.attention_label = AttentionLabel(self.attention_label)
        except ValueError as exc:
            raise DataError(f"Trial {self.trial_id}: invalid attention label {self.attention_label!r}") from exc

    @property
    def attended_stimulus(self) -> str:
        left, right = self.stimulus_ids
        return left if self.attention_label is AttentionLabel.ATTENDED_LEFT else right

    @property
    def unattended_stimulus(self) -> str:
        left, right = self.stimulus_ids
        return right if self.attention_label is AttentionLabel.ATTENDED_LEFT else left


@dataclass(frozen=True)
class Trial:
    """Aligned EEG with its attended and unattended envelopes.

    All three arrays share the first dimension and ``sample_rate``; arrays are
    read-only once constructed.
    """

    eeg: np.ndarray
    attended_envelope: np.ndarray
    unattended_envelope: np.ndarray
    attention_label: AttentionLabel
    sample_rate: float
    trial_id: str

    def __post_init__(self) -> None:
        eeg = _frozen_array(self.eeg, "EEG")
        attended = _frozen_array(self.attended_envelope, "Attended envelope")
        unattended = _frozen_array(self.unattended_envelope, "Unattended envelope")
        lengths = {eeg.shape[0], attended.shape[0], unattended.shape[0]}
        if len(lengths) != 1:
            raise DataError(
                f"Trial {self.trial_id}: length mismatch eeg={eeg.shape[0]} "
                f"attended={attended.shape[0]} unattended={unattended.shape[0]}"
            )
        if attended.shape[1] != unattended.shape[1]:
            raise DataError(f"Trial {self.trial_id}: envelopes have different band counts")
        for name, arr in (("EEG", eeg), ("attended", attended), ("unattended", unattended)):
            if not np.all(np.isfinite(arr)):
                raise DataError(f"Trial {self.trial_id}: non-finite values in {name} series")
        object.__setattr__(self, "eeg", eeg)
        object.__setattr__(self, "attended_envelope", attended)
        object.__setattr__(self, "unattended_envelope", unattended)
        object.__setattr__(self, "attention_label", AttentionLabel(self.attention_label))

    @property
    def n_samples(self) -> int:
        return int(self.eeg.shape[0])

    @property
    def n_channels(self) -> int:
        return int(self.eeg.shape[1])

    @property
    def duration(self) -> float:
        return self.n_samples / float(self.sample_rate)


@dataclass(frozen=True)
class ExcludedTrial:
    trial_id: str
    reason: str


@dataclass(frozen=True)
class Subject:
    """Ordered trials of one listener, plus the trials dropped during alignment."""

    subject_id: str
    trials: Tuple[Trial, ...]
    excluded: Tuple[ExcludedTrial, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "trials", tuple(self.trials))
        object.__setattr__(self, "excluded", tuple(self.excluded))
        ids = [t.trial_id for t in self.trials]
        if len(set(ids)) != len(ids):
            raise DataError(f"Subject {self.subject_id}: duplicate trial ids {ids}")
        rates = {float(t.sample_rate) for t in self.trials}
        if len(rates) > 1:
            raise DataError(f"Subject {self.subject_id}: mixed sample rates {sorted(rates)}")

    @property
    def n_trials(self) -> int:
        return len(self.trials)


def flat_envelope_report(trials: Iterable[Trial]) -> dict:
    """Count trials whose envelopes are flat (zero variance) per band."""

    flat_attended = 0
    flat_unattended = 0
    n = 0
    for trial in trials:
        n += 1
        if np.any(trial.attended_envelope.std(axis=0) == 0):
            flat_attended += 1
        if np.any(trial.unattended_envelope.std(axis=0) == 0):
            flat_unattended += 1
    return {"n_trials": n, "flat_attended": flat_attended, "flat_unattended": flat_unattended}


def summarize_trials(subjects: Sequence[Subject], min_samples: int = 0) -> List[Subject]:
    """Log a QC summary and drop trials shorter than ``min_samples``.

    Parameters
    ----------
    subjects:
        Subjects to inspect.
    min_samples:
        Minimum number of samples a trial must have to be kept.

    Returns
    -------
    List[Subject]
        New subjects with short trials moved to ``excluded``.
    """

    kept_subjects: List[Subject] = []
    total = 0
    dropped = 0
    for subject in subjects:
        kept: List[Trial] = []
        excluded = list(subject.excluded)
        for trial in subject.trials:
            total += 1
            if trial.n_samples < min_samples:
                dropped += 1
                excluded.append(
                    ExcludedTrial(trial.trial_id, f"too short ({trial.n_samples} < {min_samples} samples)")
                )
                continue
            kept.append(trial)
        kept_subjects.append(Subject(subject.subject_id, tuple(kept), tuple(excluded)))
        report = flat_envelope_report(kept)
        logger.info(
            "Subject %s: %d trials kept, %d excluded, flat envelopes att=%d unatt=%d",
            subject.subject_id,
            len(kept),
            len(excluded),
            report["flat_attended"],
            report["flat_unattended"],
        )
    logger.info("Trial QC: %d total, %d dropped as too short", total, dropped)
    return kept_subjects


__all__ = [
    "Algorithm",
    "AttentionLabel",
    "Prediction",
    "Envelope",
    "RawTrial",
    "Trial",
    "ExcludedTrial",
    "Subject",
    "flat_envelope_report",
    "summarize_trials",
]
