from __future__ import annotations

import json
import logging
import subprocess
import threading
from concurrent.futures import Future
from typing import Callable, List, Optional, Protocol

import numpy as np
from PySide6 import QtCore

try:
    import sounddevice as sd
    _sounddevice_import_error = None
except Exception as e:
    sd = None
    _sounddevice_import_error = e

from buffers import AudioRingBuffer
from config import BUFFER_PRESETS, TIME_UPDATE_INTERVAL_MS, buffer_preset_from_env
from dsp import DestinationNode, MediaSourceNode
from models import BufferPreset, TransportEvents
from utils import clamp, have_exe, safe_float

logger = logging.getLogger(__name__)


class TransportError(RuntimeError):
    pass


class Transport(Protocol):
    current_time: float

    @property
    def duration(self) -> float: ...

    def load(self, url: str) -> None: ...

    def play(self) -> Future: ...

    def pause(self) -> None: ...

    def bind(self, events: TransportEvents) -> None: ...

    def unbind(self) -> None: ...


# -----------------------------
# ffmpeg helpers
# -----------------------------

def make_ffmpeg_cmd(url: str, start_sec: float, sample_rate: int, channels: int) -> List[str]:
    return [
        "ffmpeg", "-hide_banner", "-loglevel", "error",
        "-ss", str(max(0.0, start_sec)),
        "-i", url,
        "-vn",
        "-ac", str(channels),
        "-ar", str(sample_rate),
        "-f", "f32le",
        "pipe:1"
    ]


def probe_duration(url: str) -> float:
    if not have_exe("ffprobe"):
        return 0.0
    cmd = [
        "ffprobe",
        "-v", "error",
        "-print_format", "json",
        "-show_entries", "format=duration",
        url,
    ]
    p = subprocess.run(cmd, capture_output=True, text=True, check=False)
    if p.returncode != 0:
        logger.warning("ffprobe failed for %s: %s", url, p.stderr.strip())
        return 0.0
    try:
        data = json.loads(p.stdout or "{}")
    except json.JSONDecodeError:
        return 0.0
    return max(0.0, safe_float(data.get("format", {}).get("duration"), 0.0))


# -----------------------------
# Decoder thread
# -----------------------------

class DecoderThread(threading.Thread):
    """
    Reads float32 PCM from ffmpeg and pushes it into the ring buffer.

    Reports "ready" once prebuffered, then "eof" when the stream ends, or
    "error" if ffmpeg cannot be started or the read fails.
    """
    def __init__(self,
                 url: str,
                 start_sec: float,
                 sample_rate: int,
                 channels: int,
                 ring: AudioRingBuffer,
                 buffer_preset: BufferPreset,
                 state_cb: Callable[[str, Optional[str]], None]):
        super().__init__(daemon=True)
        self.url = url
        self.start_sec = float(start_sec)
        self.sample_rate = sample_rate
        self.channels = channels
        self.ring = ring
        self._buffer_preset = buffer_preset
        self._state_cb = state_cb
        self._stop = threading.Event()
        self._proc: Optional[subprocess.Popen] = None
        self._read_frames = max(1, buffer_preset.blocksize_frames * 2)
        self._frame_bytes = channels * 4
        self._byte_buffer = bytearray()

    def stop(self):
        self._stop.set()
        proc = self._proc
        if proc is not None and proc.poll() is None:
            proc.terminate()

    def _read_pcm_chunk(self, stdout) -> Optional[np.ndarray]:
        if self._stop.is_set():
            return None
        while len(self._byte_buffer) < self._frame_bytes:
            chunk = stdout.read(self._read_frames * self._frame_bytes)
            if not chunk:
                break
            self._byte_buffer.extend(chunk)
        if len(self._byte_buffer) < self._frame_bytes:
            return None
        frames = min(len(self._byte_buffer) // self._frame_bytes, self._read_frames)
        take_bytes = frames * self._frame_bytes
        data = bytes(self._byte_buffer[:take_bytes])
        del self._byte_buffer[:take_bytes]
        return np.frombuffer(data, dtype=np.float32).reshape((-1, self.channels))

    def run(self):
        cmd = make_ffmpeg_cmd(self.url, self.start_sec, self.sample_rate, self.channels)
        try:
            self._proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.DEVNULL)
        except OSError as e:
            self._state_cb("error", f"Failed to start ffmpeg: {e}")
            return

        stdout = self._proc.stdout
        if stdout is None:
            self._state_cb("error", "ffmpeg stdout not available")
            return

        prebuffer_frames = int(min(0.6, self._buffer_preset.target_sec) * self.sample_rate)
        ready = False
        try:
            while not self._stop.is_set():
                x = self._read_pcm_chunk(stdout)
                if x is None:
                    break
                self.ring.push_blocking(x, stop_event=self._stop)
                if not ready and self.ring.frames_available() >= prebuffer_frames:
                    ready = True
                    self._state_cb("ready", None)
            if not ready and not self._stop.is_set():
                if self.ring.frames_available() == 0:
                    self._state_cb("error", f"No audio decoded from {self.url}")
                    return
                self._state_cb("ready", None)
        except (OSError, ValueError) as e:
            self._state_cb("error", f"Decoder error: {e}")
            return
        finally:
            if self._proc is not None and self._proc.poll() is None:
                self._proc.terminate()
        if not self._stop.is_set():
            self._state_cb("eof", None)


# -----------------------------
# Media transport
# -----------------------------

class MediaTransport(QtCore.QObject):
    """
    Streams one URL through ffmpeg into a sounddevice output stream.

    Each output block is pushed through ``source`` and read back from
    ``destination``, so whatever graph is wired between them processes the
    audio. Decoder events are queued onto the thread that owns this object
    before any future is resolved or signal emitted.
    """
    timeUpdated = QtCore.Signal(float, float)   # position, duration
    ended = QtCore.Signal()
    loadStarted = QtCore.Signal()
    loaded = QtCore.Signal()
    errorOccurred = QtCore.Signal(str)
    _decoderEvent = QtCore.Signal(int, str, str)  # generation, kind, message

    def __init__(
        self,
        sample_rate: int = 44100,
        channels: int = 2,
        buffer_preset: Optional[str] = None,
        output_device: Optional[int] = None,
        parent=None,
    ):
        super().__init__(parent)
        self.sample_rate = int(sample_rate)
        self.channels = int(channels)
        self._buffer_preset = BUFFER_PRESETS[buffer_preset or buffer_preset_from_env()]
        self._output_device = output_device
        self.source = MediaSourceNode()
        self.destination = DestinationNode(self.channels)

        self._ring = AudioRingBuffer(
            self.channels,
            max_seconds=self._buffer_preset.ring_max_seconds,
            sample_rate=self.sample_rate,
        )
        self._decoder: Optional[DecoderThread] = None
        self._stream = None
        self._generation = 0
        self._pending_play: list[Future] = []

        self._url: Optional[str] = None
        self._duration = 0.0
        self._offset_sec = 0.0
        self._frames_played = 0
        self._position_lock = threading.Lock()
        self._playing = False
        self._paused = True
        self._eof = False
        self._finished = False
        self._bound: list[tuple[QtCore.SignalInstance, Callable]] = []

        self._time_timer = QtCore.QTimer(self)
        self._time_timer.setInterval(TIME_UPDATE_INTERVAL_MS)
        self._time_timer.timeout.connect(self._on_time_tick)
        self._decoderEvent.connect(self._on_decoder_event, QtCore.Qt.ConnectionType.QueuedConnection)

    # -----------------------------
    # Transport contract
    # -----------------------------

    @property
    def duration(self) -> float:
        return self._duration

    @property
    def current_time(self) -> float:
        with self._position_lock:
            return self._offset_sec + self._frames_played / float(self.sample_rate)

    @current_time.setter
    def current_time(self, seconds: float) -> None:
        target = max(0.0, float(seconds))
        if self._duration > 0:
            target = clamp(target, 0.0, self._duration)
        active = self._decoder is not None
        if active:
            self._stop_decoder()
        with self._position_lock:
            self._offset_sec = target
            self._frames_played = 0
        self._eof = False
        self._finished = False
        if active:
            self._start_decoder()
        logger.debug("Seek to %.3fs", target)

    def bind(self, events: TransportEvents) -> None:
        self.unbind()
        pairs = [
            (self.timeUpdated, events.on_time_update),
            (self.ended, events.on_ended),
            (self.loadStarted, events.on_load_start),
            (self.loaded, events.on_load),
        ]
        for signal, slot in pairs:
            signal.connect(slot)
        self._bound = pairs

    def unbind(self) -> None:
        for signal, slot in self._bound:
            signal.disconnect(slot)
        self._bound = []

    def load(self, url: str) -> None:
        self._close()
        self._url = url
        self._finished = False
        with self._position_lock:
            self._offset_sec = 0.0
            self._frames_played = 0
        self.loadStarted.emit()
        self._duration = probe_duration(url)
        logger.info("Loaded %s (duration=%.2fs)", url, self._duration)
        self.loaded.emit()

    def play(self) -> Future:
        future: Future = Future()
        if sd is None:
            future.set_exception(TransportError(f"sounddevice not available: {_sounddevice_import_error}"))
            return future
        if not have_exe("ffmpeg"):
            future.set_exception(TransportError("ffmpeg not found in PATH."))
            return future
        if self._url is None:
            future.set_exception(TransportError("No source loaded"))
            return future

        if self._finished:
            # Replaying after the end starts over, like a media element.
            self._finished = False
            with self._position_lock:
                self._offset_sec = 0.0
                self._frames_played = 0

        self._paused = False
        self._playing = True
        if self._decoder is None:
            self._eof = False
            self._pending_play.append(future)
            self._start_decoder()
            return future

        if self._stream is None:
            self._pending_play.append(future)
            return future

        self._time_timer.start()
        future.set_result(None)
        return future

    def pause(self) -> None:
        self._paused = True
        self._time_timer.stop()
        self._fail_pending(TransportError("play() interrupted by pause()"))

    def close(self) -> None:
        self.pause()
        self._close()

    # -----------------------------
    # Internal
    # -----------------------------

    def _start_decoder(self) -> None:
        self._generation += 1
        generation = self._generation
        self._ring.clear()
        self.source.reset()

        def state_cb(kind: str, msg: Optional[str]) -> None:
            self._decoderEvent.emit(generation, kind, msg or "")

        with self._position_lock:
            start_sec = self._offset_sec
        self._decoder = DecoderThread(
            url=self._url,
            start_sec=start_sec,
            sample_rate=self.sample_rate,
            channels=self.channels,
            ring=self._ring,
            buffer_preset=self._buffer_preset,
            state_cb=state_cb,
        )
        self._decoder.start()

    def _stop_decoder(self) -> None:
        if self._decoder is not None:
            self._decoder.stop()
            self._decoder = None
        self._ring.clear()

    def _close(self) -> None:
        self._playing = False
        self._stop_decoder()
        self._close_stream()

    def _fail_pending(self, error: Exception) -> None:
        pending, self._pending_play = self._pending_play, []
        for future in pending:
            if not future.done():
                future.set_exception(error)

    def _resolve_pending(self) -> None:
        pending, self._pending_play = self._pending_play, []
        for future in pending:
            if not future.done():
                future.set_result(None)

    def _on_decoder_event(self, generation: int, kind: str, msg: str) -> None:
        if generation != self._generation:
            return
        if kind == "ready":
            if not self._ensure_stream():
                return
            if not self._paused:
                self._time_timer.start()
            self._resolve_pending()
        elif kind == "error":
            logger.error("Transport error: %s", msg)
            self._decoder = None
            self._fail_pending(TransportError(msg))
            self.errorOccurred.emit(msg)
        elif kind == "eof":
            self._eof = True

    def _on_time_tick(self) -> None:
        underruns = self._ring.consume_underruns()
        if underruns and not self._eof:
            logger.debug("Ring underruns since last tick: %d", underruns)
        self.timeUpdated.emit(self.current_time, self._duration)
        if self._eof and self._ring.frames_available() == 0:
            self._time_timer.stop()
            self._close()
            self._finished = True
            logger.info("Playback finished")
            self.ended.emit()

    def _ensure_stream(self) -> bool:
        if self._stream is not None:
            return True

        def callback(outdata, frames, time_info, status):
            if not self._playing or self._paused:
                outdata.fill(0)
                return
            raw = np.zeros((frames, self.channels), dtype=np.float32)
            filled = self._ring.pop_into(raw)
            with self._position_lock:
                self._frames_played += filled
            self.source.push(raw)
            outdata[:] = self.destination.take(frames)

        try:
            self._stream = sd.OutputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="float32",
                blocksize=self._buffer_preset.blocksize_frames,
                latency=self._buffer_preset.latency,
                device=self._output_device,
                callback=callback,
            )
            self._stream.start()
        except Exception as e:
            msg = f"Audio output error: {e}"
            logger.error(msg)
            self._stream = None
            self._fail_pending(TransportError(msg))
            self.errorOccurred.emit(msg)
            return False
        return True

    def _close_stream(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except Exception as e:
            logger.warning("Failed to close output stream: %s", e)
