"""Lagged design matrices and correlation helpers for the decoders."""

from __future__ import annotations

from typing import Sequence

import numpy as np
from scipy import signal

from aad_benchmark.errors import ConfigurationError


def ms_to_lag(ms: float, sample_rate: float) -> int:
    """Convert milliseconds to the nearest whole number of samples."""

    return int(round(ms / 1000.0 * sample_rate))


def lag_range(min_ms: float, max_ms: float, sample_rate: float) -> np.ndarray:
    """Integer lags (samples) from ``min_ms`` to ``max_ms`` inclusive."""

    lo, hi = ms_to_lag(min_ms, sample_rate), ms_to_lag(max_ms, sample_rate)
    if lo > hi:
        raise ConfigurationError(f"Empty lag window: {min_ms} ms to {max_ms} ms")
    return np.arange(lo, hi + 1)


def shift(x: np.ndarray, lag: int) -> np.ndarray:
    """Delay ``x`` by ``lag`` samples along axis 0 (``out[t] = x[t - lag]``).

    Samples shifted in from outside the signal are zero; nothing wraps.
    """

    x = np.asarray(x, dtype=np.float64)
    out = np.zeros_like(x)
    T = x.shape[0]
    if abs(lag) >= T:
        return out
    if lag >= 0:
        out[lag:] = x[: T - lag]
    else:
        out[: T + lag] = x[-lag:]
    return out


def build_lagged_features(features: np.ndarray, lags: Sequence[int]) -> np.ndarray:
    """Build a zero-padded lagged design matrix.

    Column ``j * len(lags) + i`` holds feature ``j`` delayed by ``lags[i]``
    samples, i.e. lags are tiled per feature dimension in column-major order.
    Positive lags look into the past of the feature.
    """

    features = np.asarray(features, dtype=np.float64)
    if features.ndim == 1:
        features = features[:, None]
    if features.ndim != 2:
        raise ValueError("Features must be a 2D array (T, D)")
    lags = list(lags)
    T, D = features.shape
    X = np.zeros((T, len(lags) * D), dtype=np.float64)
    for j in range(D):
        for i, lag in enumerate(lags):
            X[:, j * len(lags) + i] = shift(features[:, j], lag)
    return X


def pearson_corr(a: np.ndarray, b: np.ndarray) -> float:
    """Pearson correlation of the flattened inputs; 0 when either is constant."""

    a = np.asarray(a, dtype=np.float64).ravel()
    b = np.asarray(b, dtype=np.float64).ravel()
    if a.size < 2 or a.std() == 0 or b.std() == 0:
        return 0.0
    r = float(np.corrcoef(a, b)[0, 1])
    return r if np.isfinite(r) else 0.0


def max_abs_xcorr(eeg: np.ndarray, envelope: np.ndarray, max_lag: int) -> float:
    """Largest |normalized cross-correlation| over channels and lags.

    Parameters
    ----------
    eeg:
        Window of shape (W, C).
    envelope:
        Window of shape (W,).
    max_lag:
        Lags from ``-max_lag`` to ``+max_lag`` samples are searched.
    """

    eeg = np.asarray(eeg, dtype=np.float64)
    env = np.asarray(envelope, dtype=np.float64).ravel()
    W = env.size
    env = env - env.mean()
    env_norm = np.sqrt(np.sum(env**2))
    if W == 0 or env_norm == 0:
        return 0.0
    lag = min(int(max_lag), W - 1)
    center = W - 1
    best = 0.0
    for ch in range(eeg.shape[1]):
        x = eeg[:, ch] - eeg[:, ch].mean()
        x_norm = np.sqrt(np.sum(x**2))
        if x_norm == 0:
            continue
        full = signal.correlate(x, env, mode="full", method="direct")
        window = full[center - lag : center + lag + 1] / (x_norm * env_norm)
        peak = float(np.max(np.abs(window)))
        if np.isfinite(peak) and peak > best:
            best = peak
    return best


__all__ = [
    "ms_to_lag",
    "lag_range",
    "shift",
    "build_lagged_features",
    "pearson_corr",
    "max_abs_xcorr",
]
