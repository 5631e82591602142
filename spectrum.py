from __future__ import annotations

import math
from typing import Sequence

from config import SPECTRUM_BIN_HZ


def rebin_spectrum(
    raw: Sequence[int],
    band_frequencies: Sequence[float],
    bin_width: float = SPECTRUM_BIN_HZ,
) -> list[int]:
    """
    Fold linear analyser bins onto the equalizer bands.

    Walks the spectrum in ``bin_width`` steps and emits one value for a band
    when a step lands strictly inside (freq, freq + bin_width). A band that no
    step lands in is skipped, so the result can be shorter than the band list.
    """
    values: list[int] = []
    if len(band_frequencies) == 0:
        return values

    limit = band_frequencies[-1] + bin_width
    current = 0
    step = 0.0
    while step <= limit and current < len(band_frequencies):
        freq = band_frequencies[current]
        if freq < step < freq + bin_width:
            current += 1
            index = int(math.floor(step / bin_width + 0.5))
            if index < len(raw):
                values.append(int(raw[index]))
        step += bin_width
    return values
