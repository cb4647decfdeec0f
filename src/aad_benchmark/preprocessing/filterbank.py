"""Auditory filter banks used to split audio into ERB-spaced sub-bands."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import List, Sequence

import numpy as np
from scipy import signal

from aad_benchmark.errors import ConfigurationError

from .utils import zero_phase_filter

logger = logging.getLogger(__name__)

# Glasberg & Moore (1990) ERB-rate scale.
_ERB_SCALE = 21.4
_ERB_FREQ = 229.0

# Lower edge of the approximate bank, keeps the lowest band away from DC.
_MIN_BAND_EDGE_HZ = 50.0

# Highest allowed center frequency, as a fraction of Nyquist.
_MAX_CENTER_FRACTION = 0.95


class FilterBankUnavailable(RuntimeError):
    """The requested filter design cannot be built with the given parameters."""


def hz_to_erb_rate(freq: np.ndarray | float) -> np.ndarray:
    return _ERB_SCALE * np.log10(1.0 + np.asarray(freq, dtype=np.float64) / _ERB_FREQ)


def erb_rate_to_hz(erb: np.ndarray | float) -> np.ndarray:
    return (10.0 ** (np.asarray(erb, dtype=np.float64) / _ERB_SCALE) - 1.0) * _ERB_FREQ


def erb_bandwidth(freq: np.ndarray | float) -> np.ndarray:
    """Equivalent rectangular bandwidth in Hz at ``freq``."""

    return 24.7 * (4.37 * np.asarray(freq, dtype=np.float64) / 1000.0 + 1.0)


def erb_space(f_low: float, f_high: float, spacing: float = 1.5, n_bands: int | None = None) -> np.ndarray:
    """Center frequencies evenly spaced on the ERB-rate scale.

    Parameters
    ----------
    f_low / f_high:
        Frequency range in Hz (both ends included).
    spacing:
        Distance between neighbouring centers in ERB units. Ignored when
        ``n_bands`` is given.
    n_bands:
        Explicit number of bands.
    """

    if not 0 < f_low < f_high:
        raise ConfigurationError(f"Invalid frequency range {f_low}-{f_high} Hz")
    erb_low, erb_high = hz_to_erb_rate(f_low), hz_to_erb_rate(f_high)
    if n_bands is None:
        if spacing <= 0:
            raise ConfigurationError("ERB spacing must be positive")
        n_bands = int(round((erb_high - erb_low) / spacing)) + 1
    if n_bands < 1:
        raise ConfigurationError(f"Number of bands must be >= 1, got {n_bands}")
    if n_bands == 1:
        return np.array([float(erb_rate_to_hz((erb_low + erb_high) / 2.0))])
    return erb_rate_to_hz(np.linspace(erb_low, erb_high, n_bands))


class FilterBankProvider(ABC):
    """Splits mono audio (T,) into band-limited signals (T, B)."""

    name: str = "base"

    def __init__(self, center_frequencies: Sequence[float], sample_rate: float):
        self.center_frequencies = np.asarray(center_frequencies, dtype=np.float64)
        self.sample_rate = float(sample_rate)
        self.degraded = False

    @property
    def n_bands(self) -> int:
        return int(self.center_frequencies.size)

    @abstractmethod
    def apply(self, audio: np.ndarray) -> np.ndarray:
        """Filter ``audio`` sampled at ``self.sample_rate``."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(n_bands={self.n_bands}, fs={self.sample_rate:g}, degraded={self.degraded})"


class GammatoneFilterBank(FilterBankProvider):
    """FIR gammatone filters from :func:`scipy.signal.gammatone`."""

    name = "gammatone"

    def __init__(self, center_frequencies: Sequence[float], sample_rate: float):
        super().__init__(center_frequencies, sample_rate)
        design = getattr(signal, "gammatone", None)
        if design is None:
            raise FilterBankUnavailable("scipy.signal.gammatone is not available")
        self._filters: List[np.ndarray] = []
        for fc in self.center_frequencies:
            try:
                b, _ = design(fc, "fir", fs=self.sample_rate)
            except ValueError as exc:
                raise FilterBankUnavailable(f"Gammatone design failed at {fc:.1f} Hz: {exc}") from exc
            self._filters.append(np.asarray(b, dtype=np.float64))

    def apply(self, audio: np.ndarray) -> np.ndarray:
        audio = np.asarray(audio, dtype=np.float64)
        bands = [signal.lfilter(b, [1.0], audio) for b in self._filters]
        return np.stack(bands, axis=1)


class ButterworthFilterBank(FilterBankProvider):
    """Butterworth band-pass per ERB band, applied forward-backward."""

    name = "butterworth"

    def __init__(self, center_frequencies: Sequence[float], sample_rate: float, order: int = 4):
        super().__init__(center_frequencies, sample_rate)
        self.order = order
        upper_limit = _MAX_CENTER_FRACTION * self.sample_rate / 2.0
        self._sections: List[np.ndarray] = []
        for fc in self.center_frequencies:
            half_bw = erb_bandwidth(fc) / 2.0
            low = max(fc - half_bw, _MIN_BAND_EDGE_HZ)
            high = min(fc + half_bw, upper_limit)
            if not low < high:
                raise FilterBankUnavailable(f"Empty band around {fc:.1f} Hz ({low:.1f}-{high:.1f} Hz)")
            self._sections.append(
                signal.butter(order, [low, high], btype="bandpass", fs=self.sample_rate, output="sos")
            )

    def apply(self, audio: np.ndarray) -> np.ndarray:
        audio = np.asarray(audio, dtype=np.float64)
        return np.stack([zero_phase_filter(sos, audio) for sos in self._sections], axis=1)


class BroadbandFilterBank(FilterBankProvider):
    """Single pass-through channel; always flagged as degraded."""

    name = "broadband"

    def __init__(self, center_frequencies: Sequence[float] = (0.0,), sample_rate: float = 1.0):
        super().__init__(center_frequencies[:1], sample_rate)
        self.degraded = True

    def apply(self, audio: np.ndarray) -> np.ndarray:
        return np.asarray(audio, dtype=np.float64).reshape(-1, 1)


_CHAINS = {
    "gammatone": ("gammatone", "butterworth", "broadband"),
    "butterworth": ("butterworth", "broadband"),
    "broadband": ("broadband",),
}


def _build_provider(name: str, centers: np.ndarray, sample_rate: float, order: int) -> FilterBankProvider:
    if name == "gammatone":
        return GammatoneFilterBank(centers, sample_rate)
    if name == "butterworth":
        return ButterworthFilterBank(centers, sample_rate, order=order)
    return BroadbandFilterBank(centers, sample_rate)


def select_filter_bank(
    preferred: str = "gammatone",
    freq_range: Sequence[float] = (150.0, 4000.0),
    sample_rate: float = 8000.0,
    erb_spacing: float = 1.5,
    n_bands: int | None = None,
    order: int = 4,
) -> FilterBankProvider:
    """Build the first filter bank of the fallback chain that can be designed.

    The chain is ``gammatone -> butterworth -> broadband`` starting at
    ``preferred``. Any provider picked after the first one is marked as
    degraded and a warning is logged.
    """

    if preferred not in _CHAINS:
        raise ConfigurationError(f"Unknown filter bank '{preferred}'. Available: {sorted(_CHAINS)}")
    f_low, f_high = float(freq_range[0]), float(freq_range[1])
    nyquist = sample_rate / 2.0
    if f_high > nyquist:
        raise ConfigurationError(
            f"Upper band edge {f_high} Hz must not exceed the Nyquist frequency of {nyquist} Hz"
        )
    centers = erb_space(f_low, f_high, spacing=erb_spacing, n_bands=n_bands)
    # Filter designs need every center strictly below Nyquist.
    centers = np.minimum(centers, _MAX_CENTER_FRACTION * nyquist)

    chain = _CHAINS[preferred]
    for position, name in enumerate(chain):
        try:
            provider = _build_provider(name, centers, sample_rate, order)
        except FilterBankUnavailable as exc:
            logger.warning("Filter bank '%s' unavailable: %s", name, exc)
            continue
        if position > 0:
            provider.degraded = True
            logger.warning("Falling back to '%s' filter bank (%d bands)", name, provider.n_bands)
        logger.info("Using %r", provider)
        return provider
    raise ConfigurationError(f"No filter bank could be built from chain {chain}")


__all__ = [
    "FilterBankProvider",
    "FilterBankUnavailable",
    "GammatoneFilterBank",
    "ButterworthFilterBank",
    "BroadbandFilterBank",
    "erb_space",
    "erb_bandwidth",
    "hz_to_erb_rate",
    "erb_rate_to_hz",
    "select_filter_bank",
]
