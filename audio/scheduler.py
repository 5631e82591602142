from __future__ import annotations

import itertools
from typing import Callable, Protocol

from PySide6 import QtCore

from config import FRAME_INTERVAL_MS


class FrameScheduler(Protocol):
    def schedule_tick(self, callback: Callable[[], None]) -> int: ...

    def cancel_tick(self, handle: int) -> None: ...


class QtFrameScheduler(QtCore.QObject):
    """
    One-shot frame callbacks on the Qt event loop.

    Every schedule_tick() arms a single-shot timer; cancel_tick() stops it
    before it fires and is a no-op for handles that already fired.
    """

    def __init__(self, interval_ms: int = FRAME_INTERVAL_MS, parent=None):
        super().__init__(parent)
        self._interval_ms = int(interval_ms)
        self._ids = itertools.count(1)
        self._timers: dict[int, QtCore.QTimer] = {}

    def schedule_tick(self, callback: Callable[[], None]) -> int:
        handle = next(self._ids)
        timer = QtCore.QTimer(self)
        timer.setSingleShot(True)
        timer.setInterval(self._interval_ms)

        def fire() -> None:
            self._release(handle)
            callback()

        timer.timeout.connect(fire)
        self._timers[handle] = timer
        timer.start()
        return handle

    def cancel_tick(self, handle: int) -> None:
        timer = self._release(handle)
        if timer is not None:
            timer.stop()

    def _release(self, handle: int):
        timer = self._timers.pop(handle, None)
        if timer is not None:
            timer.deleteLater()
        return timer
