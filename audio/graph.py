from __future__ import annotations

import logging
from dataclasses import replace
from typing import Optional

import numpy as np

from config import ANALYSER_FFT_SIZE
from dsp import AnalyserNode, AudioNode, BiquadFilterNode, GainNode, StereoPannerNode
from equalizer import build_chain, chain_gains
from models import EqualizerConfig, FilterChain, GraphHandles
from utils import clamp

logger = logging.getLogger(__name__)


class GraphAlreadyInitialized(RuntimeError):
    pass


class EqualizerLayoutError(ValueError):
    pass


# -----------------------------
# Processing graph
# -----------------------------

class ProcessingGraph:
    """
    source -> gain -> [filter chain] -> analyser -> panner -> destination

    Nodes are allocated once per session by initialize(). Equalizer gains are
    patched in place; a different band layout needs rebuild_filter_chain().
    """

    def __init__(self, sample_rate: int, channels: int, fft_size: int = ANALYSER_FFT_SIZE):
        self.sample_rate = int(sample_rate)
        self.channels = int(channels)
        self.fft_size = int(fft_size)
        self._handles: Optional[GraphHandles] = None
        self._source: Optional[AudioNode] = None
        self._destination: Optional[AudioNode] = None

    @property
    def handles(self) -> Optional[GraphHandles]:
        return self._handles

    @property
    def initialized(self) -> bool:
        return self._handles is not None

    def _require_handles(self) -> GraphHandles:
        if self._handles is None:
            raise RuntimeError("Processing graph is not initialized")
        return self._handles

    def _make_filters(self, chain: FilterChain) -> tuple[BiquadFilterNode, ...]:
        return tuple(BiquadFilterNode.from_stage(stage, self.sample_rate, self.channels) for stage in chain)

    def _wire_filters(self, gain: GainNode, filters: tuple[BiquadFilterNode, ...], analyser: AnalyserNode) -> None:
        # Build the tail first so gain switches over to a fully wired chain.
        last: AudioNode = analyser
        for node in reversed(filters):
            node.reconnect(last)
            last = node
        gain.reconnect(last)

    def initialize(
        self,
        source: AudioNode,
        destination: AudioNode,
        pre_amp: float = 0.0,
        equalizer: Optional[EqualizerConfig] = None,
        initial_pan: Optional[float] = None,
    ) -> GraphHandles:
        if self._handles is not None:
            raise GraphAlreadyInitialized("Processing graph already initialized for this session")

        chain = build_chain(equalizer, pre_amp) if equalizer is not None else ()
        gain = GainNode()
        panner = StereoPannerNode(initial_pan or 0.0)
        analyser = AnalyserNode(fft_size=self.fft_size)
        filters = self._make_filters(chain)

        analyser.reconnect(panner)
        panner.reconnect(destination)
        self._wire_filters(gain, filters, analyser)
        source.connect(gain)

        self._source = source
        self._destination = destination
        self._handles = GraphHandles(gain=gain, panner=panner, analyser=analyser, filters=filters, chain=chain)
        logger.info("Processing graph initialized with %d filter stage(s)", len(chain))
        return self._handles

    def set_volume(self, volume: float) -> None:
        handles = self._require_handles()
        handles.gain.gain = clamp(float(volume), 0.0, 100.0) / 100.0

    def set_pan(self, pan: Optional[float]) -> None:
        handles = self._require_handles()
        handles.panner.pan = pan or 0.0

    def update_equalizer_gains(self, equalizer: EqualizerConfig, pre_amp: float = 0.0) -> FilterChain:
        handles = self._require_handles()
        gains = chain_gains(equalizer, pre_amp)
        if len(gains) != len(handles.filters):
            raise EqualizerLayoutError(
                f"Equalizer has {len(gains)} band(s) but the filter chain was built with {len(handles.filters)}"
            )
        for node, gain_db in zip(handles.filters, gains):
            node.gain = gain_db
        chain = tuple(replace(stage, gain=gain_db) for stage, gain_db in zip(handles.chain, gains))
        self._handles = replace(handles, chain=chain)
        logger.debug("Equalizer gains updated: %s", gains)
        return chain

    def rebuild_filter_chain(self, equalizer: Optional[EqualizerConfig], pre_amp: float = 0.0) -> FilterChain:
        handles = self._require_handles()
        chain = build_chain(equalizer, pre_amp) if equalizer is not None else ()
        filters = self._make_filters(chain)
        self._wire_filters(handles.gain, filters, handles.analyser)
        for node in handles.filters:
            node.disconnect()
        self._handles = replace(handles, filters=filters, chain=chain)
        logger.info("Filter chain rebuilt with %d stage(s)", len(chain))
        return chain

    def read_spectrum(self) -> np.ndarray:
        handles = self._require_handles()
        return handles.analyser.get_byte_frequency_data()

    def teardown(self) -> None:
        handles = self._handles
        if handles is None:
            return
        if self._source is not None:
            self._source.disconnect(handles.gain)
        for node in (handles.gain, *handles.filters, handles.analyser, handles.panner):
            node.disconnect()
        self._handles = None
        self._source = None
        self._destination = None
        logger.info("Processing graph torn down")
