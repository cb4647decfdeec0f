"""Utilities for loading YAML configuration files."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

import yaml

from .data import Algorithm
from .decoders.cca import CCAConfig
from .decoders.correlation import CorrelationConfig
from .decoders.trf import TRFConfig
from .errors import ConfigurationError
from .evaluation import EvaluationConfig
from .preprocessing.alignment import AlignmentConfig
from .preprocessing.envelopes import EnvelopeConfig
from .preprocessing.utils import parse_config


def load_config(path: str | Path) -> Dict[str, Any]:
    """Load a YAML configuration file.

    Parameters
    ----------
    path:
        Path to the YAML file.

    Returns
    -------
    Dict[str, Any]
        Parsed configuration dictionary (empty for an empty file).
    """

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with config_path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Config must be a mapping, got {type(data).__name__}")
    return data


def configure_logging(level: str | int = "INFO") -> None:
    """Configure root logging once for scripts and notebooks."""

    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


@dataclass
class AADConfig:
    """All configuration sections of a benchmark run.

    YAML files use the attribute names as top-level sections; each section is
    converted to the dataclass of its stage. ``configurations`` maps a channel
    configuration name (e.g. ``"ch2"``, ``"ch8"``) to free-form metadata that
    the loading layer uses to locate that configuration's data.
    """

    envelope: Any = None
    alignment: Any = None
    correlation: Any = None
    trf: Any = None
    cca: Any = None
    evaluation: Any = None
    configurations: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        self.envelope = parse_config(self.envelope, EnvelopeConfig)
        self.alignment = parse_config(self.alignment, AlignmentConfig)
        self.correlation = parse_config(self.correlation, CorrelationConfig)
        self.trf = parse_config(self.trf, TRFConfig)
        self.cca = parse_config(self.cca, CCAConfig)
        self.evaluation = parse_config(self.evaluation, EvaluationConfig)
        self.validate()

    def validate(self) -> None:
        """Cross-section checks that no single stage can make on its own."""

        if self.envelope.target_rate != self.alignment.target_rate:
            raise ConfigurationError(
                f"Envelope rate {self.envelope.target_rate} Hz differs from EEG rate "
                f"{self.alignment.target_rate} Hz"
            )
        if (self.envelope.highpass, self.envelope.lowpass) != (
            self.alignment.highpass,
            self.alignment.lowpass,
        ):
            raise ConfigurationError("Envelope and EEG must share the same band-pass")

    def decoder_params(self) -> Dict[Algorithm, Any]:
        """Per-algorithm parameter objects keyed by ``Algorithm``."""

        return {
            Algorithm.CORRELATION: self.correlation,
            Algorithm.TRF: self.trf,
            Algorithm.CCA: self.cca,
        }


def load_aad_config(path: str | Path) -> AADConfig:
    """Load a YAML file into an :class:`AADConfig`.

    Logging is left untouched; scripts call ``configure_logging(config.log_level)``.
    """

    return parse_config(load_config(path), AADConfig)


__all__ = [
    "AADConfig",
    "configure_logging",
    "load_aad_config",
    "load_config",
    "parse_config",
]
