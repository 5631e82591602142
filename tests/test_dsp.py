import math

import numpy as np
import pytest

from dsp import (
    AnalyserNode,
    BiquadFilterNode,
    DestinationNode,
    GainNode,
    MediaSourceNode,
    StereoPannerNode,
    biquad_coeffs,
)
from models import FilterKind, FilterStage

SR = 44100


def _response(sos: np.ndarray, freq_hz: float) -> float:
    z = np.exp(-1j * 2.0 * math.pi * freq_hz / SR)
    b0, b1, b2, _, a1, a2 = sos[0]
    h = (b0 + b1 * z + b2 * z * z) / (1.0 + a1 * z + a2 * z * z)
    return float(abs(h))


def _noise(frames: int = 2048, channels: int = 2) -> np.ndarray:
    rng = np.random.default_rng(3)
    return rng.uniform(-0.5, 0.5, size=(frames, channels)).astype(np.float32)


def test_gain_node_scales_block() -> None:
    node = GainNode(0.25)
    x = np.ones((8, 2), dtype=np.float32)

    y = node.process(x)

    assert y.dtype == np.float32
    assert np.allclose(y, 0.25)


@pytest.mark.parametrize("kind", list(FilterKind))
def test_zero_gain_filters_pass_audio_through(kind: FilterKind) -> None:
    node = BiquadFilterNode(SR, 2, kind=kind, frequency=1000.0, gain=0.0, q=0.7)
    x = _noise()

    y = node.process(x)

    assert np.allclose(y, x, atol=1e-5)


def test_low_shelf_boosts_dc() -> None:
    sos = np.array([biquad_coeffs(FilterKind.LOW_SHELF, 100.0, 6.0, 1.0, SR)])

    assert _response(sos, 1.0) == pytest.approx(10 ** (6 / 20), rel=1e-3)
    assert _response(sos, 15000.0) == pytest.approx(1.0, rel=1e-2)


def test_high_shelf_cuts_top_end() -> None:
    sos = np.array([biquad_coeffs(FilterKind.HIGH_SHELF, 4000.0, -6.0, 1.0, SR)])

    assert _response(sos, SR / 2 - 1.0) == pytest.approx(10 ** (-6 / 20), rel=1e-3)
    assert _response(sos, 20.0) == pytest.approx(1.0, rel=1e-2)


def test_peaking_gain_at_center() -> None:
    sos = np.array([biquad_coeffs(FilterKind.PEAKING, 1000.0, 4.5, 1.4, SR)])

    assert _response(sos, 1000.0) == pytest.approx(10 ** (4.5 / 20), rel=1e-6)


def test_filter_node_from_stage_and_gain_patch() -> None:
    stage = FilterStage(FilterKind.PEAKING, 250.0, 1.0, 0.532)
    node = BiquadFilterNode.from_stage(stage, SR, 2)
    before = node.sos

    node.gain = -3.0

    assert node.kind == FilterKind.PEAKING
    assert node.frequency == 250.0
    assert node.q == pytest.approx(0.532)
    assert node.gain == -3.0
    assert not np.array_equal(before, node.sos)


def test_shelf_stage_uses_default_q() -> None:
    node = BiquadFilterNode.from_stage(FilterStage(FilterKind.HIGH_SHELF, 8000.0, 2.0), SR, 2)

    assert node.q == 1.0


def test_panner_center_is_identity() -> None:
    x = _noise(64)

    assert StereoPannerNode(0.0).process(x) is x


def test_panner_hard_left_and_right() -> None:
    x = np.array([[0.2, 0.6]], dtype=np.float32)

    left = StereoPannerNode(-1.0).process(x)
    right = StereoPannerNode(1.0).process(x)

    assert left[0].tolist() == pytest.approx([0.8, 0.0], abs=1e-6)
    assert right[0].tolist() == pytest.approx([0.0, 0.8], abs=1e-6)


def test_panner_clamps_range() -> None:
    node = StereoPannerNode(3.0)
    assert node.pan == 1.0
    node.pan = -7
    assert node.pan == -1.0


def test_analyser_silence_reads_zero() -> None:
    analyser = AnalyserNode(fft_size=1024)
    analyser.process(np.zeros((1024, 2), dtype=np.float32))

    data = analyser.get_byte_frequency_data()

    assert data.dtype == np.uint8
    assert data.shape == (512,)
    assert not data.any()


def test_analyser_peak_lands_on_tone_bin() -> None:
    analyser = AnalyserNode(fft_size=1024, smoothing=0.0)
    t = np.arange(1024)
    tone = 0.01 * np.sin(2.0 * math.pi * 64 * t / 1024)
    analyser.process(np.stack([tone, tone], axis=1).astype(np.float32))

    data = analyser.get_byte_frequency_data()

    assert int(np.argmax(data)) == 64
    assert data[64] > data[300]


def test_analyser_rejects_bad_size() -> None:
    with pytest.raises(ValueError):
        AnalyserNode(fft_size=1000)


def test_nodes_chain_through_connect() -> None:
    source = MediaSourceNode()
    destination = DestinationNode(2)
    source.connect(GainNode(0.5)).connect(destination)

    source.push(np.ones((4, 2), dtype=np.float32))
    out = destination.take(6)

    assert out.shape == (6, 2)
    assert np.allclose(out[:4], 0.5)
    assert np.allclose(out[4:], 0.0)
    assert not destination.take(2).any()


def test_infinite_q_peaking_passes_audio_through() -> None:
    node = BiquadFilterNode(SR, 2, kind=FilterKind.PEAKING, frequency=50.0, gain=6.0, q=math.inf)
    x = _noise()

    y = node.process(x)

    assert np.isfinite(node.sos).all()
    assert np.allclose(y, x, atol=1e-6)
