from __future__ import annotations

import logging
import math
from typing import Optional, Sequence

from models import EqualizerConfig, FilterChain, FilterKind, FilterStage

logger = logging.getLogger(__name__)


def is_ascending(frequencies: Sequence[float]) -> bool:
    return all(a < b for a, b in zip(frequencies, frequencies[1:]))


def derive_q_values(frequencies: Sequence[float]) -> list[Optional[float]]:
    """
    Q for each band from its neighbours: 2*f[i] / |f[i+1] - f[i-1]|.

    The first and last bands are shelves and get no Q.
    """
    last = len(frequencies) - 1
    q_values: list[Optional[float]] = []
    for i, freq in enumerate(frequencies):
        if i == 0 or i == last:
            q_values.append(None)
        else:
            span = abs(frequencies[i + 1] - frequencies[i - 1])
            # Coincident neighbours only happen with unordered bands.
            q_values.append((2.0 * freq) / span if span else math.inf)
    return q_values


def chain_gains(config: EqualizerConfig, pre_amp: float = 0.0) -> list[float]:
    return [gain + pre_amp for gain in config.gains]


def build_chain(config: EqualizerConfig, pre_amp: float = 0.0) -> FilterChain:
    frequencies = config.frequencies
    if not is_ascending(frequencies):
        logger.warning("Equalizer bands are not in ascending frequency order: %s", frequencies)

    q_values = derive_q_values(frequencies)
    gains = chain_gains(config, pre_amp)
    last = len(frequencies) - 1
    stages = []
    for i, (freq, gain, q) in enumerate(zip(frequencies, gains, q_values)):
        if i == 0:
            kind = FilterKind.LOW_SHELF
        elif i == last:
            kind = FilterKind.HIGH_SHELF
        else:
            kind = FilterKind.PEAKING
        stages.append(FilterStage(kind=kind, frequency=freq, gain=gain, q=q))
    return tuple(stages)
