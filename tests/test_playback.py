import logging

import numpy as np
import pytest

from audio.playback import PlaybackStateMachine, should_seek
from models import PlaybackStatus

BANDS = (60.0, 250.0)


def _machine(transport, scheduler, bands=BANDS, frames=None):
    delivered = frames if frames is not None else []
    machine = PlaybackStateMachine(
        transport,
        scheduler,
        spectrum_source=lambda: np.arange(100, dtype=np.uint8),
        bands_provider=lambda: bands,
        on_visualization=delivered.append,
    )
    return machine, delivered


@pytest.mark.parametrize(
    ("desired", "actual", "expected"),
    [
        (5.0, 10.0, True),
        (10.4, 10.0, False),
        (11.0, 10.0, False),
        (11.5, 10.0, True),
        (10.0, 10.0, False),
    ],
)
def test_should_seek(desired: float, actual: float, expected: bool) -> None:
    assert should_seek(desired, actual) is expected


def test_sync_position_seeks_only_outside_tolerance(transport, scheduler) -> None:
    machine, _ = _machine(transport, scheduler)
    machine.note_progress(10.0)

    assert machine.sync_position(10.4) is False
    assert machine.sync_position(5.0) is True
    machine.note_progress(10.0)
    assert machine.sync_position(11.5) is True

    assert transport.seeks() == [5.0, 11.5]


def test_playing_starts_visualization(transport, scheduler) -> None:
    machine, delivered = _machine(transport, scheduler)

    machine.apply_status(PlaybackStatus.PLAYING)

    assert transport.count("play") == 1
    assert machine.is_visualizing
    assert delivered == [[3, 11]]
    assert len(scheduler.pending) == 1


def test_tick_reschedules_and_delivers(transport, scheduler) -> None:
    machine, delivered = _machine(transport, scheduler)
    machine.apply_status(PlaybackStatus.PLAYING)

    scheduler.run_tick()
    scheduler.run_tick()

    assert len(delivered) == 3
    assert len(scheduler.pending) == 1


def test_no_visualization_without_bands(transport, scheduler) -> None:
    machine, delivered = _machine(transport, scheduler, bands=None)

    machine.apply_status(PlaybackStatus.PLAYING)

    assert not machine.is_visualizing
    assert delivered == []
    assert scheduler.pending == {}


def test_no_visualization_without_callback(transport, scheduler) -> None:
    machine = PlaybackStateMachine(
        transport,
        scheduler,
        spectrum_source=lambda: np.zeros(10, dtype=np.uint8),
        bands_provider=lambda: BANDS,
    )

    machine.apply_status(PlaybackStatus.PLAYING)

    assert not machine.is_visualizing


def test_pause_twice_is_idempotent(transport, scheduler) -> None:
    machine, _ = _machine(transport, scheduler)
    machine.apply_status(PlaybackStatus.PLAYING)

    machine.apply_status(PlaybackStatus.PAUSED)
    machine.apply_status(PlaybackStatus.PAUSED)

    assert transport.count("pause") == 2
    assert machine.status == PlaybackStatus.PAUSED
    assert not machine.is_visualizing
    assert scheduler.pending == {}


def test_stop_rewinds_and_cancels(transport, scheduler) -> None:
    machine, _ = _machine(transport, scheduler)
    machine.apply_status(PlaybackStatus.PLAYING)
    machine.note_progress(42.0)

    machine.apply_status(PlaybackStatus.STOPPED)

    assert transport.calls[-2:] == [("pause",), ("seek", 0.0)]
    assert machine.last_position == 0.0
    assert not machine.is_visualizing
    assert scheduler.pending == {}


def test_play_failure_is_logged_and_keeps_intent(transport, scheduler, caplog: pytest.LogCaptureFixture) -> None:
    transport.play_error = RuntimeError("device busy")
    machine, delivered = _machine(transport, scheduler)

    with caplog.at_level(logging.ERROR, logger="audio.playback"):
        machine.apply_status(PlaybackStatus.PLAYING)

    assert machine.status == PlaybackStatus.PLAYING
    assert not machine.is_visualizing
    assert delivered == []
    assert "device busy" in caplog.text


def test_pause_wins_over_late_play_completion(transport, scheduler) -> None:
    transport.auto_resolve = False
    machine, delivered = _machine(transport, scheduler)

    machine.apply_status(PlaybackStatus.PLAYING)
    machine.apply_status(PlaybackStatus.PAUSED)
    transport.pending[0].set_result(None)

    assert not machine.is_visualizing
    assert delivered == []
    assert scheduler.pending == {}


def test_stale_play_completion_does_not_double_loop(transport, scheduler) -> None:
    transport.auto_resolve = False
    machine, _ = _machine(transport, scheduler)

    machine.apply_status(PlaybackStatus.PLAYING)
    machine.apply_status(PlaybackStatus.PLAYING)
    first, second = transport.pending
    first.set_result(None)
    assert not machine.is_visualizing
    second.set_result(None)

    assert machine.is_visualizing
    assert len(scheduler.pending) == 1


def test_cancel_from_inside_callback_leaves_no_tick(transport, scheduler) -> None:
    holder = {}

    def on_frame(values):
        holder["machine"].cancel_visualization()

    machine = PlaybackStateMachine(
        transport,
        scheduler,
        spectrum_source=lambda: np.zeros(100, dtype=np.uint8),
        bands_provider=lambda: BANDS,
        on_visualization=on_frame,
    )
    holder["machine"] = machine

    machine.start_visualization()

    assert not machine.is_visualizing
    assert scheduler.pending == {}


def test_status_accepts_string_values(transport, scheduler) -> None:
    machine, _ = _machine(transport, scheduler)

    machine.apply_status("PAUSED")

    assert machine.status == PlaybackStatus.PAUSED
