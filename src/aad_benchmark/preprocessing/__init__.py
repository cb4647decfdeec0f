"""Preprocessing steps: envelope extraction and EEG/envelope alignment."""

from .alignment import AlignmentConfig, align_trial, build_subject, rereference
from .envelopes import EnvelopeConfig, EnvelopeExtractor, extract_envelope
from .filterbank import FilterBankProvider, select_filter_bank
from .utils import SlidingWindow, integer_decimation_factor, parse_config

__all__ = [
    "AlignmentConfig",
    "EnvelopeConfig",
    "EnvelopeExtractor",
    "FilterBankProvider",
    "SlidingWindow",
    "align_trial",
    "build_subject",
    "extract_envelope",
    "integer_decimation_factor",
    "parse_config",
    "rereference",
    "select_filter_bank",
]
