from __future__ import annotations

import os

from models import BufferPreset

DEFAULT_SAMPLE_RATE = 44100
DEFAULT_CHANNELS = 2

# Analyser window. 32768 points gives ~1.35 Hz resolution at 44.1 kHz.
ANALYSER_FFT_SIZE = 32768
ANALYSER_SMOOTHING = 0.8
ANALYSER_MIN_DB = -100.0
ANALYSER_MAX_DB = -30.0

# Step used when folding the analyser output onto equalizer bands.
SPECTRUM_BIN_HZ = 23.4

POSITION_SEEK_TOLERANCE_SEC = 1.0

FRAME_INTERVAL_MS = 16
TIME_UPDATE_INTERVAL_MS = 250

BUFFER_PRESETS = {
    "Low latency": BufferPreset(
        blocksize_frames=512,
        latency="low",
        target_sec=0.25,
        ring_max_seconds=1.0,
    ),
    "Balanced": BufferPreset(
        blocksize_frames=1024,
        latency="high",
        target_sec=0.5,
        ring_max_seconds=2.0,
    ),
    "Stable": BufferPreset(
        blocksize_frames=2048,
        latency="high",
        target_sec=1.0,
        ring_max_seconds=4.0,
    ),
}
DEFAULT_BUFFER_PRESET = "Balanced"


def buffer_preset_from_env() -> str:
    name = os.environ.get("SOUNDCHAIN_BUFFER_PRESET", DEFAULT_BUFFER_PRESET).strip()
    if name not in BUFFER_PRESETS:
        return DEFAULT_BUFFER_PRESET
    return name


DEFAULT_EQUALIZER = {
    60: 0.0,
    170: 0.0,
    310: 0.0,
    600: 0.0,
    1000: 0.0,
    3000: 0.0,
    6000: 0.0,
    12000: 0.0,
    14000: 0.0,
    16000: 0.0,
}
