from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from audio.graph import ProcessingGraph
from audio.playback import PlaybackStateMachine
from config import ANALYSER_FFT_SIZE, DEFAULT_CHANNELS, DEFAULT_SAMPLE_RATE
from dsp import AudioNode
from models import EqualizerConfig, PlayerCallbacks, PlayerConfig, TransportEvents

if TYPE_CHECKING:
    from audio.scheduler import FrameScheduler
    from audio.transport import Transport

logger = logging.getLogger(__name__)


class SessionStateError(RuntimeError):
    pass


@dataclass(frozen=True)
class ConfigDelta:
    volume: bool = False
    position: bool = False
    status: bool = False
    pan: bool = False
    equalizer_gains: bool = False
    equalizer_layout: bool = False

    @property
    def any(self) -> bool:
        return (
            self.volume
            or self.position
            or self.status
            or self.pan
            or self.equalizer_gains
            or self.equalizer_layout
        )


def _layout_changed(old: Optional[EqualizerConfig], new: Optional[EqualizerConfig]) -> bool:
    if old is None or new is None:
        return (old is None) != (new is None)
    return not new.same_layout(old)


def diff_config(old: PlayerConfig, new: PlayerConfig) -> ConfigDelta:
    layout = _layout_changed(old.equalizer, new.equalizer)
    gains = (
        not layout
        and new.equalizer is not None
        and (new.equalizer.gains != old.equalizer.gains or new.pre_amp != old.pre_amp)
    )
    return ConfigDelta(
        volume=new.volume != old.volume,
        position=new.position != old.position,
        status=new.play_status != old.play_status,
        pan=new.stereo_pan != old.stereo_pan,
        equalizer_gains=gains,
        equalizer_layout=layout,
    )


class SoundSession:
    """
    One mounted playback session: a transport, a processing graph and the
    playback state machine, kept in step with successive PlayerConfig values.
    """

    def __init__(
        self,
        transport: Transport,
        scheduler: FrameScheduler,
        callbacks: Optional[PlayerCallbacks] = None,
        sample_rate: int = DEFAULT_SAMPLE_RATE,
        channels: int = DEFAULT_CHANNELS,
        fft_size: int = ANALYSER_FFT_SIZE,
    ):
        self.transport = transport
        self.scheduler = scheduler
        self.callbacks = callbacks or PlayerCallbacks()
        self.graph = ProcessingGraph(sample_rate, channels, fft_size=fft_size)
        self.config: Optional[PlayerConfig] = None
        self.playback: Optional[PlaybackStateMachine] = None

    @property
    def active(self) -> bool:
        return self.config is not None

    def _bands(self):
        if self.config is None or self.config.equalizer is None:
            return None
        return self.config.equalizer.frequencies

    def _make_events(self) -> TransportEvents:
        callbacks = self.callbacks

        def on_time_update(position: float, duration: float) -> None:
            if self.playback is not None:
                self.playback.note_progress(position)
            if callbacks.on_playing is not None:
                callbacks.on_playing(position, duration)

        def on_ended() -> None:
            if callbacks.on_finished_playing is not None:
                callbacks.on_finished_playing()

        def on_load_start() -> None:
            if callbacks.on_loading is not None:
                callbacks.on_loading()

        def on_load() -> None:
            if callbacks.on_load is not None:
                callbacks.on_load()

        return TransportEvents(
            on_time_update=on_time_update,
            on_ended=on_ended,
            on_load_start=on_load_start,
            on_load=on_load,
        )

    def initialize(self, config: PlayerConfig, source: AudioNode, destination: AudioNode) -> None:
        if self.config is not None:
            raise SessionStateError("Session already initialized")

        try:
            self.transport.bind(self._make_events())
            self.transport.load(config.url)
            self.graph.initialize(
                source,
                destination,
                pre_amp=config.pre_amp,
                equalizer=config.equalizer,
                initial_pan=config.stereo_pan,
            )
        except Exception:
            logger.exception("Session setup failed for %s", config.url)
            self.transport.unbind()
            self.graph.teardown()
            raise

        self.config = config
        self.playback = PlaybackStateMachine(
            self.transport,
            self.scheduler,
            spectrum_source=self.graph.read_spectrum,
            bands_provider=self._bands,
            on_visualization=self.callbacks.on_visualization_change,
            status=config.play_status,
        )
        self.graph.set_volume(config.volume)
        self.playback.apply_status(config.play_status)
        self.graph.set_pan(config.stereo_pan)
        logger.info("Session started for %s (%s)", config.url, config.play_status.value)

    def apply_config_change(self, new: PlayerConfig) -> ConfigDelta:
        if self.config is None:
            raise SessionStateError("Session is not initialized")
        return self.apply_config_change_from(self.config, new)

    def apply_config_change_from(self, old: PlayerConfig, new: PlayerConfig) -> ConfigDelta:
        if self.config is None or self.playback is None:
            raise SessionStateError("Session is not initialized")

        delta = diff_config(old, new)
        self.config = new
        if not delta.any:
            return delta
        logger.debug("Applying config change: %s", delta)

        if delta.volume:
            self.graph.set_volume(new.volume)
        if delta.position:
            self.playback.sync_position(new.position)
        if delta.status:
            self.playback.apply_status(new.play_status)
        if delta.pan:
            self.graph.set_pan(new.stereo_pan)
        if delta.equalizer_layout:
            self.graph.rebuild_filter_chain(new.equalizer, new.pre_amp)
        elif delta.equalizer_gains:
            self.graph.update_equalizer_gains(new.equalizer, new.pre_amp)
        return delta

    def teardown(self) -> None:
        if self.config is None:
            return
        if self.playback is not None:
            self.playback.cancel_visualization()
        self.transport.pause()
        self.transport.unbind()
        self.graph.teardown()
        self.playback = None
        self.config = None
        logger.info("Session torn down")
