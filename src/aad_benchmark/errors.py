"""Exception and warning types shared across the decoding pipeline."""

from __future__ import annotations


class ConfigurationError(ValueError):
    """Invalid run configuration (non-integer decimation, bad band edges, ...).

    Fatal: raised before any model is fitted and never caught by the harness.
    """


class DataError(ValueError):
    """A single trial cannot be used (missing envelope, length mismatch, NaNs).

    The aligner catches this per trial, logs it and excludes the trial.
    """


class StatisticalInputError(ValueError):
    """Too few paired observations for a significance test."""


class NumericalDegeneracyWarning(RuntimeWarning):
    """A decomposition or regression was rescued by perturbation or fallback."""


__all__ = [
    "ConfigurationError",
    "DataError",
    "StatisticalInputError",
    "NumericalDegeneracyWarning",
]
