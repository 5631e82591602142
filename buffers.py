from __future__ import annotations

import threading
from collections import deque
from typing import Optional

import numpy as np


class AudioRingBuffer:
    """
    Thread-safe queue of decoded PCM blocks between the decoder and the output stream.

    push_blocking(frames, stop_event): frames (n, ch) float32, waits while full
    pop_into(out): fills provided buffer, zero-padded on underrun
    """

    def __init__(self, channels: int, max_seconds: float, sample_rate: int):
        self.channels = channels
        self.sample_rate = sample_rate
        self.max_frames = max(1, int(max_seconds * sample_rate))
        self._dq: deque[np.ndarray] = deque()
        self._frames = 0
        self._underruns = 0
        self._lock = threading.Lock()
        self._not_full = threading.Condition(self._lock)

    def clear(self) -> None:
        with self._not_full:
            self._dq.clear()
            self._frames = 0
            self._not_full.notify_all()

    def frames_available(self) -> int:
        with self._lock:
            return self._frames

    def push_blocking(self, frames: np.ndarray, stop_event: Optional[threading.Event]) -> None:
        if frames.size == 0:
            return
        if frames.dtype != np.float32:
            frames = frames.astype(np.float32, copy=False)
        if frames.ndim != 2 or frames.shape[1] != self.channels:
            raise ValueError(f"frames must be (n,{self.channels}) float32, got {frames.shape} {frames.dtype}")

        offset = 0
        total = frames.shape[0]
        with self._not_full:
            while offset < total:
                if stop_event is not None and stop_event.is_set():
                    return
                space = self.max_frames - self._frames
                if space <= 0:
                    self._not_full.wait(timeout=0.05)
                    continue
                take = min(space, total - offset)
                self._dq.append(frames[offset : offset + take])
                self._frames += take
                offset += take

    def pop_into(self, out: np.ndarray) -> int:
        if out.ndim != 2 or out.shape[1] != self.channels:
            raise ValueError(f"out must be (n,{self.channels}) float32, got {out.shape} {out.dtype}")

        n = out.shape[0]
        idx = 0
        with self._not_full:
            while idx < n and self._dq:
                chunk = self._dq[0]
                take = min(n - idx, chunk.shape[0])
                out[idx : idx + take] = chunk[:take]
                idx += take
                if take == chunk.shape[0]:
                    self._dq.popleft()
                else:
                    self._dq[0] = chunk[take:, :]
                self._frames -= take
                self._not_full.notify_all()
            if 0 < n and idx < n:
                self._underruns += 1

        if idx < n:
            out[idx:n, :].fill(0)
        return idx

    def consume_underruns(self) -> int:
        with self._lock:
            underruns = self._underruns
            self._underruns = 0
            return underruns


class SampleHistory:
    """
    Fixed-size mono history of the most recent samples, oldest first.

    Written from the audio thread, read by the analyser on the control thread.
    """

    def __init__(self, size: int):
        self.size = max(1, int(size))
        self._buffer = np.zeros(self.size, dtype=np.float32)
        self._write_index = 0
        self._lock = threading.Lock()

    def clear(self) -> None:
        with self._lock:
            self._buffer.fill(0.0)
            self._write_index = 0

    def push(self, frames: np.ndarray) -> None:
        if frames.size == 0:
            return
        mono = frames.mean(axis=1, dtype=np.float32) if frames.ndim == 2 else frames.astype(np.float32, copy=False)
        if mono.shape[0] > self.size:
            mono = mono[-self.size :]

        n = mono.shape[0]
        with self._lock:
            end = self._write_index + n
            if end <= self.size:
                self._buffer[self._write_index : end] = mono
            else:
                first = self.size - self._write_index
                self._buffer[self._write_index :] = mono[:first]
                self._buffer[: end - self.size] = mono[first:]
            self._write_index = end % self.size

    def snapshot(self) -> np.ndarray:
        with self._lock:
            if self._write_index == 0:
                return self._buffer.copy()
            return np.concatenate((self._buffer[self._write_index :], self._buffer[: self._write_index]))
