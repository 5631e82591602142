from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Iterator, Mapping, Optional, Union


@dataclass(frozen=True)
class BufferPreset:
    blocksize_frames: int
    latency: str | float
    target_sec: float
    ring_max_seconds: float


class PlaybackStatus(Enum):
    PAUSED = "PAUSED"
    PLAYING = "PLAYING"
    STOPPED = "STOPPED"

    @classmethod
    def from_value(cls, value: Union["PlaybackStatus", str]) -> "PlaybackStatus":
        if isinstance(value, cls):
            return value
        text = str(value).strip().upper()
        for status in cls:
            if status.value == text:
                return status
        raise ValueError(f"Unknown playback status: {value!r}")


class FilterKind(Enum):
    LOW_SHELF = "lowshelf"
    PEAKING = "peaking"
    HIGH_SHELF = "highshelf"


@dataclass(frozen=True)
class FilterStage:
    kind: FilterKind
    frequency: float
    gain: float
    q: Optional[float] = None


FilterChain = tuple[FilterStage, ...]


@dataclass(frozen=True)
class EqualizerConfig:
    """
    Ordered (frequency_hz, gain_db) bands.

    Band order is insertion order and is expected to be ascending by
    frequency; neighbouring bands are used to derive each peaking Q.
    """
    bands: tuple[tuple[float, float], ...] = ()

    @classmethod
    def from_mapping(cls, mapping: Mapping[Any, float]) -> "EqualizerConfig":
        return cls(tuple((float(freq), float(gain)) for freq, gain in mapping.items()))

    @property
    def frequencies(self) -> tuple[float, ...]:
        return tuple(freq for freq, _ in self.bands)

    @property
    def gains(self) -> tuple[float, ...]:
        return tuple(gain for _, gain in self.bands)

    def same_layout(self, other: Optional["EqualizerConfig"]) -> bool:
        return other is not None and self.frequencies == other.frequencies

    def __len__(self) -> int:
        return len(self.bands)

    def __iter__(self) -> Iterator[tuple[float, float]]:
        return iter(self.bands)


@dataclass(frozen=True)
class PlayerConfig:
    url: str
    play_status: PlaybackStatus = PlaybackStatus.STOPPED
    position: float = 0.0
    volume: float = 100.0
    equalizer: Optional[EqualizerConfig] = None
    pre_amp: float = 0.0
    stereo_pan: float = 0.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "play_status", PlaybackStatus.from_value(self.play_status))
        if self.equalizer is not None and not isinstance(self.equalizer, EqualizerConfig):
            object.__setattr__(self, "equalizer", EqualizerConfig.from_mapping(self.equalizer))

    def replace(self, **changes) -> "PlayerConfig":
        return replace(self, **changes)


@dataclass(frozen=True)
class PlayerCallbacks:
    on_playing: Optional[Callable[[float, float], None]] = None
    on_visualization_change: Optional[Callable[[list[int]], None]] = None
    on_finished_playing: Optional[Callable[[], None]] = None
    on_loading: Optional[Callable[[], None]] = None
    on_load: Optional[Callable[[], None]] = None


@dataclass(frozen=True)
class GraphHandles:
    gain: Any
    panner: Any
    analyser: Any
    filters: tuple[Any, ...] = field(default_factory=tuple)
    chain: FilterChain = field(default_factory=tuple)


@dataclass(frozen=True)
class TransportEvents:
    on_time_update: Callable[[float, float], None]
    on_ended: Callable[[], None]
    on_load_start: Callable[[], None]
    on_load: Callable[[], None]
