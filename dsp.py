from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

import numpy as np
from scipy.signal import sosfilt

from buffers import SampleHistory
from config import ANALYSER_FFT_SIZE, ANALYSER_MAX_DB, ANALYSER_MIN_DB, ANALYSER_SMOOTHING
from models import FilterKind, FilterStage
from utils import clamp


# -----------------------------
# Node base
# -----------------------------

class AudioNode:
    """
    One processing stage of the graph.

    Blocks are (frames, channels) float32 arrays pushed from the audio thread.
    Wiring is changed on the control thread by swapping the outputs list, so a
    push in flight always sees either the old or the new connections.
    """
    name = "Node"

    def __init__(self):
        self._outputs: list[AudioNode] = []

    @property
    def outputs(self) -> tuple[AudioNode, ...]:
        return tuple(self._outputs)

    def connect(self, node: AudioNode) -> AudioNode:
        if node not in self._outputs:
            self._outputs = self._outputs + [node]
        return node

    def reconnect(self, node: AudioNode) -> AudioNode:
        self._outputs = [node]
        return node

    def disconnect(self, node: Optional[AudioNode] = None) -> None:
        if node is None:
            self._outputs = []
        else:
            self._outputs = [out for out in self._outputs if out is not node]

    def reset(self) -> None:
        return None

    def process(self, x: np.ndarray) -> np.ndarray:
        return x

    def push(self, x: np.ndarray) -> None:
        y = self.process(x)
        for node in self._outputs:
            node.push(y)


class MediaSourceNode(AudioNode):
    name = "Source"


class DestinationNode(AudioNode):
    name = "Destination"

    def __init__(self, channels: int):
        super().__init__()
        self.channels = int(channels)
        self._block: Optional[np.ndarray] = None

    def push(self, x: np.ndarray) -> None:
        self._block = x

    def take(self, frames: int) -> np.ndarray:
        block = self._block
        self._block = None
        out = np.zeros((frames, self.channels), dtype=np.float32)
        if block is None or block.size == 0:
            return out
        n = min(frames, block.shape[0])
        ch = min(self.channels, block.shape[1])
        out[:n, :ch] = block[:n, :ch]
        return out


# -----------------------------
# Gain
# -----------------------------

class GainNode(AudioNode):
    name = "Gain"

    def __init__(self, gain: float = 1.0):
        super().__init__()
        self._gain = float(gain)

    @property
    def gain(self) -> float:
        return self._gain

    @gain.setter
    def gain(self, value: float) -> None:
        self._gain = float(value)

    def process(self, x: np.ndarray) -> np.ndarray:
        gain = self._gain
        if x.size == 0 or gain == 1.0:
            return x
        return (x * gain).astype(np.float32, copy=False)


# -----------------------------
# Biquad filters
# -----------------------------

_UNITY = (1.0, 0.0, 0.0, 1.0, 0.0, 0.0)


def biquad_coeffs(kind: FilterKind, f0: float, gain_db: float, q: float, sample_rate: int) -> tuple[float, ...]:
    """
    Normalized (b0, b1, b2, 1, a1, a2) for one second-order section.

    Audio EQ Cookbook formulas; shelves use slope S = 1 and ignore Q.
    """
    A = 10.0 ** (gain_db / 40.0)
    nyquist = sample_rate / 2.0
    freq = clamp(float(f0), 0.0, nyquist) / nyquist

    if freq >= 1.0:
        if kind == FilterKind.LOW_SHELF:
            return (A * A, 0.0, 0.0, 1.0, 0.0, 0.0)
        return _UNITY
    if freq <= 0.0:
        if kind == FilterKind.HIGH_SHELF:
            return (A * A, 0.0, 0.0, 1.0, 0.0, 0.0)
        return _UNITY

    w0 = math.pi * freq
    cos_w0 = math.cos(w0)
    sin_w0 = math.sin(w0)

    if kind == FilterKind.PEAKING:
        if not math.isfinite(q):
            return _UNITY
        if q <= 0.0:
            return (A * A, 0.0, 0.0, 1.0, 0.0, 0.0)
        alpha = sin_w0 / (2.0 * q)
        b0 = 1.0 + alpha * A
        b1 = -2.0 * cos_w0
        b2 = 1.0 - alpha * A
        a0 = 1.0 + alpha / A
        a1 = -2.0 * cos_w0
        a2 = 1.0 - alpha / A
    else:
        alpha = sin_w0 / 2.0 * math.sqrt(2.0)
        k = 2.0 * math.sqrt(A) * alpha
        if kind == FilterKind.LOW_SHELF:
            b0 = A * ((A + 1.0) - (A - 1.0) * cos_w0 + k)
            b1 = 2.0 * A * ((A - 1.0) - (A + 1.0) * cos_w0)
            b2 = A * ((A + 1.0) - (A - 1.0) * cos_w0 - k)
            a0 = (A + 1.0) + (A - 1.0) * cos_w0 + k
            a1 = -2.0 * ((A - 1.0) + (A + 1.0) * cos_w0)
            a2 = (A + 1.0) + (A - 1.0) * cos_w0 - k
        else:
            b0 = A * ((A + 1.0) + (A - 1.0) * cos_w0 + k)
            b1 = -2.0 * A * ((A - 1.0) + (A + 1.0) * cos_w0)
            b2 = A * ((A + 1.0) + (A - 1.0) * cos_w0 - k)
            a0 = (A + 1.0) - (A - 1.0) * cos_w0 + k
            a1 = 2.0 * ((A - 1.0) - (A + 1.0) * cos_w0)
            a2 = (A + 1.0) - (A - 1.0) * cos_w0 - k

    return (b0 / a0, b1 / a0, b2 / a0, 1.0, a1 / a0, a2 / a0)


@dataclass(frozen=True)
class BiquadConfig:
    kind: FilterKind
    frequency: float
    gain: float
    q: float
    sos: np.ndarray


class BiquadFilterNode(AudioNode):
    name = "Biquad"

    def __init__(
        self,
        sample_rate: int,
        channels: int,
        kind: FilterKind = FilterKind.PEAKING,
        frequency: float = 350.0,
        gain: float = 0.0,
        q: float = 1.0,
    ):
        super().__init__()
        self.sample_rate = int(sample_rate)
        self.channels = int(channels)
        self._zi = np.zeros((1, 2, self.channels), dtype=np.float64)
        self._config = self._make_config(kind, frequency, gain, q)

    @classmethod
    def from_stage(cls, stage: FilterStage, sample_rate: int, channels: int) -> "BiquadFilterNode":
        q = stage.q if stage.q is not None else 1.0
        return cls(sample_rate, channels, kind=stage.kind, frequency=stage.frequency, gain=stage.gain, q=q)

    def _make_config(self, kind: FilterKind, frequency: float, gain: float, q: float) -> BiquadConfig:
        coeffs = biquad_coeffs(kind, frequency, gain, q, self.sample_rate)
        sos = np.array([coeffs], dtype=np.float64)
        return BiquadConfig(kind=kind, frequency=float(frequency), gain=float(gain), q=float(q), sos=sos)

    @property
    def kind(self) -> FilterKind:
        return self._config.kind

    @property
    def frequency(self) -> float:
        return self._config.frequency

    @property
    def q(self) -> float:
        return self._config.q

    @property
    def gain(self) -> float:
        return self._config.gain

    @gain.setter
    def gain(self, value: float) -> None:
        config = self._config
        if float(value) == config.gain:
            return
        self._config = self._make_config(config.kind, config.frequency, value, config.q)

    @property
    def sos(self) -> np.ndarray:
        return self._config.sos

    def reset(self) -> None:
        self._zi = np.zeros((1, 2, self.channels), dtype=np.float64)

    def process(self, x: np.ndarray) -> np.ndarray:
        if x.size == 0:
            return x
        sos = self._config.sos
        zi = self._zi
        if zi.shape[2] != x.shape[1]:
            zi = np.zeros((1, 2, x.shape[1]), dtype=np.float64)
        y, zi = sosfilt(sos, x, axis=0, zi=zi)
        self._zi = zi
        return y.astype(np.float32, copy=False)


# -----------------------------
# Analyser
# -----------------------------

class AnalyserNode(AudioNode):
    """
    Pass-through node that keeps the last fft_size samples for spectrum reads.

    Byte data follows the usual analyser conventions: Blackman window,
    magnitude / fft_size, exponential smoothing between reads, then the
    [min_db, max_db] range mapped onto 0..255.
    """
    name = "Analyser"

    def __init__(
        self,
        fft_size: int = ANALYSER_FFT_SIZE,
        smoothing: float = ANALYSER_SMOOTHING,
        min_db: float = ANALYSER_MIN_DB,
        max_db: float = ANALYSER_MAX_DB,
    ):
        super().__init__()
        if fft_size < 32 or fft_size & (fft_size - 1):
            raise ValueError(f"fft_size must be a power of two >= 32, got {fft_size}")
        if min_db >= max_db:
            raise ValueError("min_db must be below max_db")
        self.fft_size = int(fft_size)
        self.smoothing = clamp(float(smoothing), 0.0, 1.0)
        self.min_db = float(min_db)
        self.max_db = float(max_db)
        self._history = SampleHistory(self.fft_size)
        self._window = np.blackman(self.fft_size).astype(np.float32)
        self._smoothed = np.zeros(self.frequency_bin_count, dtype=np.float64)

    @property
    def frequency_bin_count(self) -> int:
        return self.fft_size // 2

    def reset(self) -> None:
        self._history.clear()
        self._smoothed.fill(0.0)

    def process(self, x: np.ndarray) -> np.ndarray:
        self._history.push(x)
        return x

    def get_float_frequency_data(self) -> np.ndarray:
        samples = self._history.snapshot()
        spectrum = np.fft.rfft(samples * self._window)[: self.frequency_bin_count]
        magnitudes = np.abs(spectrum) / self.fft_size
        self._smoothed = self.smoothing * self._smoothed + (1.0 - self.smoothing) * magnitudes
        with np.errstate(divide="ignore"):
            return 20.0 * np.log10(self._smoothed)

    def get_byte_frequency_data(self) -> np.ndarray:
        db = self.get_float_frequency_data()
        scaled = np.floor((255.0 / (self.max_db - self.min_db)) * (db - self.min_db))
        return np.clip(np.nan_to_num(scaled, neginf=0.0), 0, 255).astype(np.uint8)


# -----------------------------
# Stereo panner
# -----------------------------

class StereoPannerNode(AudioNode):
    name = "Stereo Panner"

    def __init__(self, pan: float = 0.0):
        super().__init__()
        self._pan = clamp(float(pan), -1.0, 1.0)

    @property
    def pan(self) -> float:
        return self._pan

    @pan.setter
    def pan(self, value: float) -> None:
        self._pan = clamp(float(value), -1.0, 1.0)

    def process(self, x: np.ndarray) -> np.ndarray:
        if x.size == 0:
            return x
        pan = self._pan
        if x.shape[1] == 1:
            angle = (pan + 1.0) / 2.0 * (math.pi / 2.0)
            y = np.empty((x.shape[0], 2), dtype=np.float32)
            y[:, 0] = x[:, 0] * math.cos(angle)
            y[:, 1] = x[:, 0] * math.sin(angle)
            return y
        if x.shape[1] != 2 or pan == 0.0:
            return x

        y = np.empty_like(x)
        if pan < 0.0:
            angle = (pan + 1.0) * (math.pi / 2.0)
            y[:, 0] = x[:, 0] + x[:, 1] * math.cos(angle)
            y[:, 1] = x[:, 1] * math.sin(angle)
        else:
            angle = pan * (math.pi / 2.0)
            y[:, 0] = x[:, 0] * math.cos(angle)
            y[:, 1] = x[:, 1] + x[:, 0] * math.sin(angle)
        return y
