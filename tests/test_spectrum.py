import numpy as np

from spectrum import rebin_spectrum


def test_one_value_per_aligned_band() -> None:
    raw = list(range(100))

    assert rebin_spectrum(raw, [60.0, 250.0]) == [3, 11]


def test_empty_band_list() -> None:
    assert rebin_spectrum(list(range(100)), []) == []


def test_deterministic_for_identical_input() -> None:
    rng = np.random.default_rng(7)
    raw = rng.integers(0, 256, size=16384, dtype=np.uint8)
    bands = [60.0, 170.0, 310.0, 600.0, 1000.0, 3000.0, 6000.0, 12000.0, 14000.0, 16000.0]

    first = rebin_spectrum(raw, bands)
    second = rebin_spectrum(raw.copy(), list(bands))

    assert first == second
    assert len(first) <= len(bands)
    assert all(isinstance(value, int) for value in first)


def test_output_follows_band_order() -> None:
    raw = list(range(1000))
    values = rebin_spectrum(raw, [60.0, 250.0, 1000.0, 4000.0])

    assert values == sorted(values)


def test_close_bands_can_be_skipped() -> None:
    # 65 Hz shares the step that already matched 60 Hz, so it gets nothing.
    assert rebin_spectrum(list(range(100)), [60.0, 65.0]) == [3]


def test_bins_past_the_buffer_are_dropped() -> None:
    assert rebin_spectrum([9, 9], [60.0]) == []
