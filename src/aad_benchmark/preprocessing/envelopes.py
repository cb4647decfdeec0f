"""Multi-band speech envelope extraction."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence, Tuple

import librosa
import numpy as np

from aad_benchmark.data import Envelope
from aad_benchmark.errors import ConfigurationError, DataError

from .filterbank import FilterBankProvider, select_filter_bank
from .utils import bandpass_and_decimate, integer_decimation_factor

logger = logging.getLogger(__name__)


@dataclass
class EnvelopeConfig:
    """Configuration for audio envelope extraction.

    Defaults follow the usual AAD recipe: gammatone bank at 8 kHz, power-law
    compression with exponent 0.6, 1-9 Hz band-pass at 128 Hz and a final
    rate of 32 Hz.
    """

    intermediate_audio_rate: int = 8000
    freq_range: Tuple[float, float] = (150.0, 4000.0)
    erb_spacing: float = 1.5
    n_bands: int | None = None
    filter_bank: str = "gammatone"
    power: float = 0.6
    intermediate_rate: int = 128
    highpass: float = 1.0
    lowpass: float = 9.0
    filter_order: int = 4
    target_rate: int = 32

    def __post_init__(self) -> None:
        self.freq_range = tuple(float(f) for f in self.freq_range)  # type: ignore[assignment]
        if len(self.freq_range) != 2:
            raise ConfigurationError("freq_range must be a (low, high) pair")
        if self.power <= 0:
            raise ConfigurationError(f"Power-law exponent must be positive, got {self.power}")
        for name in ("intermediate_audio_rate", "intermediate_rate", "target_rate"):
            value = getattr(self, name)
            if int(value) != value or value <= 0:
                raise ConfigurationError(f"{name} must be a positive integer, got {value}")


def _resample(x: np.ndarray, orig_sr: float, target_sr: float) -> np.ndarray:
    if int(orig_sr) != orig_sr:
        raise ConfigurationError(f"Source rate must be an integer number of Hz, got {orig_sr}")
    if int(orig_sr) == int(target_sr):
        return x
    return librosa.resample(x, orig_sr=int(orig_sr), target_sr=int(target_sr), res_type="polyphase", axis=0)


class EnvelopeExtractor:
    """Turn mono audio into a nonnegative (T, B) envelope at ``target_rate``.

    The filter bank is chosen once (see :func:`select_filter_bank`) and
    injected, so every stimulus of a run is processed with the same bands.
    """

    def __init__(self, config: EnvelopeConfig | None = None, filter_bank: FilterBankProvider | None = None):
        self.config = config or EnvelopeConfig()
        # Validated up front so a bad rate pair fails before any audio is read.
        self.decimation_factor = integer_decimation_factor(self.config.intermediate_rate, self.config.target_rate)
        if filter_bank is None:
            filter_bank = select_filter_bank(
                preferred=self.config.filter_bank,
                freq_range=self.config.freq_range,
                sample_rate=self.config.intermediate_audio_rate,
                erb_spacing=self.config.erb_spacing,
                n_bands=self.config.n_bands,
                order=self.config.filter_order,
            )
        elif filter_bank.sample_rate != self.config.intermediate_audio_rate and filter_bank.name != "broadband":
            raise ConfigurationError(
                f"Filter bank designed for {filter_bank.sample_rate} Hz, "
                f"audio is processed at {self.config.intermediate_audio_rate} Hz"
            )
        self.filter_bank = filter_bank

    @property
    def degraded(self) -> bool:
        return bool(self.filter_bank.degraded)

    def extract(self, audio: np.ndarray, sample_rate: float, stimulus_id: str | None = None) -> Envelope:
        """Extract the envelope of one mono stimulus.

        Parameters
        ----------
        audio:
            Mono waveform of shape (T,) or (T, 1).
        sample_rate:
            Source sampling rate in Hz (integer).
        stimulus_id:
            Optional identifier carried onto the returned ``Envelope``.
        """

        cfg = self.config
        audio = np.asarray(audio, dtype=np.float64)
        if audio.ndim == 2 and audio.shape[1] == 1:
            audio = audio[:, 0]
        if audio.ndim != 1:
            raise DataError(f"Stimulus {stimulus_id!r}: expected mono audio, got shape {audio.shape}")
        if audio.size == 0:
            raise DataError(f"Stimulus {stimulus_id!r}: empty audio")
        if not np.all(np.isfinite(audio)):
            raise DataError(f"Stimulus {stimulus_id!r}: audio contains non-finite values")

        audio = _resample(audio, sample_rate, cfg.intermediate_audio_rate)
        bands = self.filter_bank.apply(audio)
        compressed = np.abs(bands) ** cfg.power
        compressed = _resample(compressed, cfg.intermediate_audio_rate, cfg.intermediate_rate)
        envelope = bandpass_and_decimate(
            compressed,
            sample_rate=cfg.intermediate_rate,
            target_rate=cfg.target_rate,
            highpass=cfg.highpass,
            lowpass=cfg.lowpass,
            order=cfg.filter_order,
        )
        # Band-passing removes the DC level; shift each band so its minimum is zero.
        envelope = envelope - envelope.min(axis=0, keepdims=True)
        logger.debug(
            "Envelope %s: %d samples x %d bands at %d Hz",
            stimulus_id,
            envelope.shape[0],
            envelope.shape[1],
            cfg.target_rate,
        )
        return Envelope(
            samples=envelope,
            sample_rate=float(cfg.target_rate),
            stimulus_id=stimulus_id,
            degraded=self.degraded,
        )

    def extract_many(self, stimuli: Sequence[Tuple[str, np.ndarray, float]]) -> dict:
        """Extract envelopes for ``(stimulus_id, audio, sample_rate)`` triples."""

        envelopes = {}
        for stimulus_id, audio, sample_rate in stimuli:
            envelopes[stimulus_id] = self.extract(audio, sample_rate, stimulus_id=stimulus_id)
        logger.info("Extracted %d envelopes with %r", len(envelopes), self.filter_bank)
        return envelopes


def extract_envelope(
    audio: np.ndarray,
    sample_rate: float,
    config: EnvelopeConfig | None = None,
    stimulus_id: str | None = None,
) -> Envelope:
    return EnvelopeExtractor(config).extract(audio, sample_rate, stimulus_id=stimulus_id)


__all__ = ["EnvelopeConfig", "EnvelopeExtractor", "extract_envelope"]
