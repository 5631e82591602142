from __future__ import annotations

import logging
from concurrent.futures import Future
from typing import TYPE_CHECKING, Callable, Optional, Sequence

import numpy as np

from config import POSITION_SEEK_TOLERANCE_SEC
from models import PlaybackStatus
from spectrum import rebin_spectrum

if TYPE_CHECKING:
    from audio.scheduler import FrameScheduler
    from audio.transport import Transport

logger = logging.getLogger(__name__)


def should_seek(desired: float, last_known: float, tolerance: float = POSITION_SEEK_TOLERANCE_SEC) -> bool:
    """
    Seek when the desired position moved backwards or jumped ahead by more
    than the tolerance. Smaller forward moves are the transport's own progress.
    """
    return desired < last_known or (desired - last_known) > tolerance


class PlaybackStateMachine:
    """
    Turns the desired status into transport actions and runs the
    visualization loop while playing.

    The loop reschedules itself once per tick before doing any work, so
    cancel_visualization() always has the live handle to cancel.
    """

    def __init__(
        self,
        transport: Transport,
        scheduler: FrameScheduler,
        spectrum_source: Callable[[], np.ndarray],
        bands_provider: Callable[[], Optional[Sequence[float]]],
        on_visualization: Optional[Callable[[list[int]], None]] = None,
        status: PlaybackStatus = PlaybackStatus.STOPPED,
    ):
        self._transport = transport
        self._scheduler = scheduler
        self._spectrum_source = spectrum_source
        self._bands_provider = bands_provider
        self._on_visualization = on_visualization
        self.status = status
        self._request = 0
        self._frame_handle: Optional[int] = None
        self._last_position = 0.0

    @property
    def is_visualizing(self) -> bool:
        return self._frame_handle is not None

    @property
    def last_position(self) -> float:
        return self._last_position

    # -----------------------------
    # Status
    # -----------------------------

    def apply_status(self, status: PlaybackStatus) -> None:
        status = PlaybackStatus.from_value(status)
        self.status = status
        self._request += 1
        logger.debug("Playback status -> %s", status.value)

        if status == PlaybackStatus.PAUSED:
            self._transport.pause()
            self.cancel_visualization()
        elif status == PlaybackStatus.PLAYING:
            request = self._request
            future = self._transport.play()
            future.add_done_callback(lambda f: self._on_play_done(f, request))
        elif status == PlaybackStatus.STOPPED:
            self._transport.pause()
            self._transport.current_time = 0.0
            self._last_position = 0.0
            self.cancel_visualization()

    def _on_play_done(self, future: Future, request: int) -> None:
        error = future.exception()
        if error is not None:
            logger.error("Playback failed to start: %s", error)
            return
        if request != self._request or self.status != PlaybackStatus.PLAYING:
            return
        if self._on_visualization is not None and self._bands_provider() is not None:
            self.start_visualization()

    # -----------------------------
    # Position
    # -----------------------------

    def note_progress(self, position: float) -> None:
        self._last_position = float(position)

    def sync_position(self, desired: float) -> bool:
        desired = float(desired)
        seek = should_seek(desired, self._last_position)
        if seek:
            self._transport.current_time = desired
        self._last_position = desired
        return seek

    # -----------------------------
    # Visualization loop
    # -----------------------------

    def start_visualization(self) -> None:
        self.cancel_visualization()
        self._tick()

    def cancel_visualization(self) -> None:
        handle, self._frame_handle = self._frame_handle, None
        if handle is not None:
            self._scheduler.cancel_tick(handle)

    def _tick(self) -> None:
        self._frame_handle = self._scheduler.schedule_tick(self._tick)
        if self._on_visualization is None:
            return
        bands = self._bands_provider()
        if bands is None:
            # No equalizer bands to fold onto.
            self._on_visualization([])
            return
        self._on_visualization(rebin_spectrum(self._spectrum_source(), bands))
