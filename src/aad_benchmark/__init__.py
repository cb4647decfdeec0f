"""Auditory attention decoding benchmark: envelopes, decoders and evaluation."""

from .config import AADConfig, load_aad_config, load_config
from .data import Algorithm, AttentionLabel, Envelope, Prediction, RawTrial, Subject, Trial
from .evaluation import AccuracyRecord, ResultCollection, run_benchmark, run_decoder
from .statistics import compare_configurations, summarize_records

__all__ = [
    "AADConfig",
    "load_aad_config",
    "load_config",
    "Algorithm",
    "AttentionLabel",
    "Envelope",
    "Prediction",
    "RawTrial",
    "Subject",
    "Trial",
    "AccuracyRecord",
    "ResultCollection",
    "run_benchmark",
    "run_decoder",
    "compare_configurations",
    "summarize_records",
]
