"""Align preprocessed EEG with attended/unattended stimulus envelopes."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np

from aad_benchmark.data import AttentionLabel, Envelope, ExcludedTrial, RawTrial, Subject, Trial
from aad_benchmark.errors import ConfigurationError, DataError

from .utils import bandpass_and_decimate, integer_decimation_factor

logger = logging.getLogger(__name__)

RawTrialTuple = Tuple[np.ndarray, float, Union[str, int, None], Tuple[str, str], Union[AttentionLabel, str]]
LoadRawTrial = Callable[[str, int], Union[RawTrial, RawTrialTuple]]
LoadEnvelope = Callable[[str], Optional[Envelope]]

_MEAN_REFERENCES = {"mean", "average", "avg", "car"}
_NO_REFERENCE = {"none", "raw"}


@dataclass
class AlignmentConfig:
    """Configuration for EEG preprocessing and trial alignment.

    ``rereference`` is used when a trial carries no scheme of its own. It may
    be ``"mean"``, ``"none"``, a 0-based channel index or a channel name.
    """

    target_rate: int = 32
    highpass: float = 1.0
    lowpass: float = 9.0
    filter_order: int = 4
    rereference: Union[str, int] = "mean"
    min_trial_seconds: float = 0.0


def rereference(
    eeg: np.ndarray,
    scheme: Union[str, int, None],
    channel_names: Sequence[str] | None = None,
) -> np.ndarray:
    """Subtract the channel mean or a reference channel from every channel."""

    eeg = np.asarray(eeg, dtype=np.float64)
    if scheme is None:
        return eeg
    if isinstance(scheme, str):
        key = scheme.strip()
        if key.lower() in _MEAN_REFERENCES:
            return eeg - eeg.mean(axis=1, keepdims=True)
        if key.lower() in _NO_REFERENCE:
            return eeg
        if key.lstrip("-").isdigit():
            scheme = int(key)
        else:
            if channel_names is None:
                raise DataError(f"Reference channel '{key}' requested but no channel names are known")
            names = [str(n) for n in channel_names]
            if key not in names:
                raise DataError(f"Reference channel '{key}' not found among {len(names)} channels")
            scheme = names.index(key)
    if isinstance(scheme, (int, np.integer)) and not isinstance(scheme, bool):
        index = int(scheme)
        if not 0 <= index < eeg.shape[1]:
            raise DataError(f"Reference channel index {index} out of range for {eeg.shape[1]} channels")
        return eeg - eeg[:, index : index + 1]
    raise ConfigurationError(f"Unsupported rereference scheme: {scheme!r}")


def align_trial(
    raw: RawTrial,
    attended: Envelope,
    unattended: Envelope,
    config: AlignmentConfig | None = None,
) -> Trial:
    """Preprocess one raw EEG trial and pair it with its envelopes.

    The EEG is rereferenced, band-passed with the envelope band and decimated
    to ``config.target_rate``. Envelopes are truncated to the EEG length; the
    EEG duration is authoritative.

    Raises
    ------
    ConfigurationError
        If the native rate is not an integer multiple of the target rate.
    DataError
        If an envelope has the wrong rate, is shorter than the EEG, or the
        aligned series contain non-finite values.
    """

    config = config or AlignmentConfig()
    integer_decimation_factor(raw.sample_rate, config.target_rate)
    for role, env in (("attended", attended), ("unattended", unattended)):
        if float(env.sample_rate) != float(config.target_rate):
            raise DataError(
                f"Trial {raw.trial_id}: {role} envelope at {env.sample_rate} Hz, "
                f"expected {config.target_rate} Hz"
            )
    if not np.all(np.isfinite(raw.eeg)):
        raise DataError(f"Trial {raw.trial_id}: EEG contains non-finite values")

    scheme = raw.rereference if raw.rereference is not None else config.rereference
    eeg = rereference(raw.eeg, scheme, raw.channel_names)
    eeg = bandpass_and_decimate(
        eeg,
        sample_rate=raw.sample_rate,
        target_rate=config.target_rate,
        highpass=config.highpass,
        lowpass=config.lowpass,
        order=config.filter_order,
    )

    n_samples = eeg.shape[0]
    min_samples = int(np.ceil(config.min_trial_seconds * config.target_rate))
    if n_samples < max(min_samples, 1):
        raise DataError(
            f"Trial {raw.trial_id}: {n_samples / config.target_rate:.1f} s after alignment, "
            f"minimum is {config.min_trial_seconds:.1f} s"
        )
    return Trial(
        eeg=eeg,
        attended_envelope=attended.truncate(n_samples).samples,
        unattended_envelope=unattended.truncate(n_samples).samples,
        attention_label=raw.attention_label,
        sample_rate=float(config.target_rate),
        trial_id=raw.trial_id,
    )


def _as_raw_trial(subject_id: str, trial_index: int, loaded: Union[RawTrial, RawTrialTuple]) -> RawTrial:
    if isinstance(loaded, RawTrial):
        return loaded
    eeg, native_rate, reref_tag, stimulus_ids, label = loaded
    return RawTrial(
        eeg=eeg,
        sample_rate=float(native_rate),
        stimulus_ids=tuple(stimulus_ids),  # type: ignore[arg-type]
        attention_label=label,
        trial_id=f"{subject_id}-trial{trial_index:02d}",
        rereference=reref_tag,
    )


def _fetch_envelope(load_envelope: LoadEnvelope, stimulus_id: str, cache: Dict[str, Envelope]) -> Envelope:
    if stimulus_id in cache:
        return cache[stimulus_id]
    try:
        envelope = load_envelope(stimulus_id)
    except (KeyError, FileNotFoundError) as exc:
        raise DataError(f"Envelope for stimulus '{stimulus_id}' not found") from exc
    if envelope is None:
        raise DataError(f"Envelope for stimulus '{stimulus_id}' not found")
    cache[stimulus_id] = envelope
    return envelope


def build_subject(
    subject_id: str,
    trial_indices: Iterable[int],
    load_raw_trial: LoadRawTrial,
    load_envelope: LoadEnvelope,
    config: AlignmentConfig | None = None,
) -> Subject:
    """Load, align and collect the trials of one subject.

    Trials raising :class:`DataError` are logged and recorded in
    ``Subject.excluded``; configuration errors propagate.
    """

    config = config or AlignmentConfig()
    trials: List[Trial] = []
    excluded: List[ExcludedTrial] = []
    envelope_cache: Dict[str, Envelope] = {}
    for trial_index in trial_indices:
        trial_id = f"{subject_id}-trial{trial_index:02d}"
        try:
            raw = _as_raw_trial(subject_id, trial_index, load_raw_trial(subject_id, trial_index))
            trial_id = raw.trial_id
            attended = _fetch_envelope(load_envelope, raw.attended_stimulus, envelope_cache)
            unattended = _fetch_envelope(load_envelope, raw.unattended_stimulus, envelope_cache)
            trials.append(align_trial(raw, attended, unattended, config))
        except DataError as exc:
            logger.warning("Subject %s: excluding trial %s: %s", subject_id, trial_id, exc)
            excluded.append(ExcludedTrial(trial_id, str(exc)))
    logger.info("Subject %s: %d trials aligned, %d excluded", subject_id, len(trials), len(excluded))
    return Subject(subject_id=subject_id, trials=tuple(trials), excluded=tuple(excluded))


__all__ = [
    "AlignmentConfig",
    "rereference",
    "align_trial",
    "build_subject",
]
