"""Shared pytest fixtures: small seeded synthetic trials and subjects.

Everything is generated at 32 Hz directly so decoder and harness tests do not
pay for the audio/EEG preprocessing chain.
"""

from typing import Callable

import numpy as np
import pytest

from aad_benchmark.data import AttentionLabel, Subject, Trial

FS = 32.0


def smooth_envelope(rng: np.random.Generator, n_samples: int, n_bands: int = 1, width: int = 4) -> np.ndarray:
    """Nonnegative, slowly varying random envelope of shape (n_samples, n_bands)."""
    noise = rng.standard_normal((n_samples + width, n_bands))
    kernel = np.ones(width) / width
    smooth = np.stack([np.convolve(noise[:, b], kernel, mode="valid")[:n_samples] for b in range(n_bands)], axis=1)
    return smooth - smooth.min(axis=0) + 0.1


def make_trial(
    trial_id: str,
    eeg: np.ndarray,
    attended: np.ndarray,
    unattended: np.ndarray,
    label: AttentionLabel = AttentionLabel.ATTENDED_LEFT,
) -> Trial:
    return Trial(
        eeg=eeg,
        attended_envelope=attended,
        unattended_envelope=unattended,
        attention_label=label,
        sample_rate=FS,
        trial_id=trial_id,
    )


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(1234)


@pytest.fixture
def tracking_subject() -> Callable[..., Subject]:
    """Factory: EEG is a zero-lag, noise-free linear function of the attended envelope."""

    def _build(subject_id: str = "s1", n_trials: int = 4, seconds: float = 60.0, n_channels: int = 4, seed: int = 7) -> Subject:
        rng = np.random.default_rng(seed)
        gains = rng.uniform(0.5, 2.0, n_channels) * rng.choice([-1.0, 1.0], n_channels)
        n = int(seconds * FS)
        trials = []
        for i in range(n_trials):
            attended = smooth_envelope(rng, n)
            unattended = smooth_envelope(rng, n)
            eeg = attended[:, :1] * gains[None, :]
            label = AttentionLabel.ATTENDED_LEFT if i % 2 == 0 else AttentionLabel.ATTENDED_RIGHT
            trials.append(make_trial(f"{subject_id}-t{i}", eeg, attended, unattended, label))
        return Subject(subject_id, tuple(trials))

    return _build


@pytest.fixture
def ambiguous_subject() -> Callable[..., Subject]:
    """Factory: attended and unattended envelopes are identical; EEG is their sum plus noise."""

    def _build(subject_id: str = "s1", n_trials: int = 2, seconds: float = 60.0, n_channels: int = 4, seed: int = 11) -> Subject:
        rng = np.random.default_rng(seed)
        n = int(seconds * FS)
        trials = []
        for i in range(n_trials):
            envelope = smooth_envelope(rng, n)
            noise = 0.5 * rng.standard_normal((n, n_channels))
            eeg = (envelope + envelope) * np.ones((1, n_channels)) + noise
            trials.append(make_trial(f"{subject_id}-t{i}", eeg, envelope.copy(), envelope.copy()))
        return Subject(subject_id, tuple(trials))

    return _build


@pytest.fixture
def envelope_factory() -> Callable[..., np.ndarray]:
    return smooth_envelope


@pytest.fixture
def trial_factory() -> Callable[..., Trial]:
    return make_trial
