from concurrent.futures import Future
from typing import Callable, Optional

import pytest

from models import TransportEvents


class _FakeTransport:
    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.events: Optional[TransportEvents] = None
        self.duration = 120.0
        self.auto_resolve = True
        self.play_error: Optional[Exception] = None
        self.load_error: Optional[Exception] = None
        self.pending: list[Future] = []
        self._time = 0.0

    @property
    def current_time(self) -> float:
        return self._time

    @current_time.setter
    def current_time(self, seconds: float) -> None:
        self._time = float(seconds)
        self.calls.append(("seek", float(seconds)))

    def load(self, url: str) -> None:
        self.calls.append(("load", url))
        if self.load_error is not None:
            raise self.load_error

    def play(self) -> Future:
        self.calls.append(("play",))
        future: Future = Future()
        if self.play_error is not None:
            future.set_exception(self.play_error)
        elif self.auto_resolve:
            future.set_result(None)
        else:
            self.pending.append(future)
        return future

    def pause(self) -> None:
        self.calls.append(("pause",))

    def bind(self, events: TransportEvents) -> None:
        self.events = events

    def unbind(self) -> None:
        self.events = None

    def seeks(self) -> list[float]:
        return [call[1] for call in self.calls if call[0] == "seek"]

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)


class _FakeScheduler:
    def __init__(self) -> None:
        self._next = 0
        self.pending: dict[int, Callable[[], None]] = {}
        self.cancelled: list[int] = []

    def schedule_tick(self, callback: Callable[[], None]) -> int:
        self._next += 1
        self.pending[self._next] = callback
        return self._next

    def cancel_tick(self, handle: int) -> None:
        self.pending.pop(handle, None)
        self.cancelled.append(handle)

    def run_tick(self) -> None:
        handle = next(iter(self.pending))
        callback = self.pending.pop(handle)
        callback()


@pytest.fixture
def transport() -> _FakeTransport:
    return _FakeTransport()


@pytest.fixture
def scheduler() -> _FakeScheduler:
    return _FakeScheduler()


@pytest.fixture(scope="session")
def qapp():
    from PySide6 import QtCore

    app = QtCore.QCoreApplication.instance()
    if app is None:
        app = QtCore.QCoreApplication([])
    return app


@pytest.fixture
def spin(qapp) -> Callable[[int], None]:
    from PySide6 import QtCore

    def run(ms: int) -> None:
        loop = QtCore.QEventLoop()
        QtCore.QTimer.singleShot(ms, loop.quit)
        loop.exec()

    return run
