"""Decoder factory utilities."""

from __future__ import annotations

from typing import Any, Dict, Tuple, Type

from aad_benchmark.data import Algorithm
from aad_benchmark.preprocessing.utils import parse_config

from .base import BaseDecoder, PredictionResult, decide
from .cca import CCAConfig, CCADecoder
from .correlation import CorrelationConfig, CorrelationDecoder
from .trf import TRFConfig, TRFDecoder

DECODER_REGISTRY: Dict[Algorithm, Tuple[Type[BaseDecoder], Type]] = {
    Algorithm.CORRELATION: (CorrelationDecoder, CorrelationConfig),
    Algorithm.TRF: (TRFDecoder, TRFConfig),
    Algorithm.CCA: (CCADecoder, CCAConfig),
}


def build_decoder(algorithm: Algorithm | str, params: Any = None) -> BaseDecoder:
    """Create a fresh decoder; ``params`` may be a config dataclass or a mapping."""

    try:
        algorithm = Algorithm(algorithm)
    except ValueError as exc:
        available = ", ".join(a.value for a in DECODER_REGISTRY)
        raise KeyError(f"Unknown algorithm '{algorithm}'. Available: {available}") from exc
    decoder_cls, config_cls = DECODER_REGISTRY[algorithm]
    return decoder_cls(parse_config(params, config_cls))


__all__ = [
    "BaseDecoder",
    "PredictionResult",
    "decide",
    "CCAConfig",
    "CCADecoder",
    "CorrelationConfig",
    "CorrelationDecoder",
    "TRFConfig",
    "TRFDecoder",
    "DECODER_REGISTRY",
    "build_decoder",
]
