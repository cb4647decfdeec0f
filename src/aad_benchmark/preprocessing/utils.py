"""Helper utilities shared by preprocessing steps."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Type, TypeVar

import numpy as np
from scipy import signal

from aad_benchmark.errors import ConfigurationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def parse_config(config_like: Dict[str, Any] | None, cls: Type[T]) -> T:
    """Build dataclass ``cls`` from a mapping, ignoring unknown keys."""

    if config_like is None:
        return cls()
    if isinstance(config_like, cls):
        return config_like
    field_names = {f.name for f in cls.__dataclass_fields__.values()}  # type: ignore[attr-defined]
    filtered = {k: v for k, v in config_like.items() if k in field_names}
    return cls(**filtered)  # type: ignore[arg-type]


def integer_decimation_factor(source_rate: float, target_rate: float) -> int:
    """Return ``source_rate / target_rate`` if it is an exact positive integer.

    Raises
    ------
    ConfigurationError
        If the ratio is not an integer; rates are never rounded.
    """

    if source_rate <= 0 or target_rate <= 0:
        raise ConfigurationError(f"Sample rates must be positive, got {source_rate} and {target_rate}")
    ratio = float(source_rate) / float(target_rate)
    factor = int(round(ratio))
    if factor < 1 or abs(ratio - factor) > 1e-9:
        raise ConfigurationError(
            f"Cannot decimate {source_rate} Hz to {target_rate} Hz: "
            f"factor {ratio:.6g} is not an integer"
        )
    return factor


def design_bandpass(highpass: float, lowpass: float, sample_rate: float, order: int = 4) -> np.ndarray:
    """Butterworth band-pass in second-order sections."""

    nyquist = sample_rate / 2.0
    if not 0 < highpass < lowpass < nyquist:
        raise ConfigurationError(
            f"Invalid band {highpass}-{lowpass} Hz for sample rate {sample_rate} Hz"
        )
    return signal.butter(order, [highpass, lowpass], btype="bandpass", fs=sample_rate, output="sos")


def sos_pad_length(sos: np.ndarray) -> int:
    """Default edge length used by ``scipy.signal.sosfiltfilt``."""

    ntaps = 2 * len(sos) + 1
    ntaps -= min(int((sos[:, 2] == 0).sum()), int((sos[:, 5] == 0).sum()))
    return 3 * ntaps


def zero_phase_filter(sos: np.ndarray, data: np.ndarray) -> np.ndarray:
    """Forward-backward filter along axis 0.

    Inputs shorter than the filter's settling length are zero-padded at both
    ends before filtering and cropped back afterwards.
    """

    data = np.asarray(data, dtype=np.float64)
    n = data.shape[0]
    if n == 0:
        return data.copy()
    padlen = sos_pad_length(sos)
    if n > padlen:
        return signal.sosfiltfilt(sos, data, axis=0)
    pad_width = [(padlen, padlen)] + [(0, 0)] * (data.ndim - 1)
    padded = np.pad(data, pad_width, mode="constant")
    logger.debug("Zero-padding %d-sample input to %d samples before filtering", n, padded.shape[0])
    filtered = signal.sosfiltfilt(sos, padded, axis=0)
    return filtered[padlen : padlen + n]


def bandpass_and_decimate(
    data: np.ndarray,
    sample_rate: float,
    target_rate: float,
    highpass: float,
    lowpass: float,
    order: int = 4,
) -> np.ndarray:
    """Zero-phase band-pass at ``sample_rate`` then keep every n-th sample.

    The decimation factor is validated before any filtering happens.
    """

    factor = integer_decimation_factor(sample_rate, target_rate)
    if lowpass >= target_rate / 2.0:
        raise ConfigurationError(
            f"Low-pass {lowpass} Hz is above the Nyquist frequency of {target_rate} Hz"
        )
    sos = design_bandpass(highpass, lowpass, sample_rate, order=order)
    filtered = zero_phase_filter(sos, data)
    return filtered[::factor]


@dataclass
class SlidingWindow:
    size_samples: int
    step_samples: int

    def __post_init__(self) -> None:
        if self.size_samples <= 0 or self.step_samples <= 0:
            raise ConfigurationError("Window size and step must be positive")

    def generate(self, n_samples: int) -> Iterable[tuple[int, int]]:
        start = 0
        while start + self.size_samples <= n_samples:
            yield start, start + self.size_samples
            start += self.step_samples

    def count(self, n_samples: int) -> int:
        if n_samples < self.size_samples:
            return 0
        return (n_samples - self.size_samples) // self.step_samples + 1


__all__ = [
    "parse_config",
    "integer_decimation_factor",
    "design_bandpass",
    "sos_pad_length",
    "zero_phase_filter",
    "bandpass_and_decimate",
    "SlidingWindow",
]
