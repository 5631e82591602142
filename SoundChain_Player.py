from __future__ import annotations

import logging
import os
import sys

from PySide6 import QtCore

from audio.scheduler import QtFrameScheduler
from audio.session import SoundSession
from audio.transport import MediaTransport
from config import DEFAULT_CHANNELS, DEFAULT_EQUALIZER, DEFAULT_SAMPLE_RATE
from models import EqualizerConfig, PlaybackStatus, PlayerCallbacks, PlayerConfig
from utils import env_flag, safe_float

logger = logging.getLogger(__name__)


def main():
    logging.basicConfig(
        level=logging.DEBUG if env_flag("SOUNDCHAIN_DEBUG") else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if len(sys.argv) < 2:
        print(f"usage: {os.path.basename(sys.argv[0])} <url-or-path>", file=sys.stderr)
        sys.exit(2)

    app = QtCore.QCoreApplication(sys.argv)
    app.setApplicationName("SoundChain Player")

    transport = MediaTransport(DEFAULT_SAMPLE_RATE, DEFAULT_CHANNELS)
    scheduler = QtFrameScheduler()
    transport.errorOccurred.connect(lambda msg: app.exit(1))

    def on_playing(position: float, duration: float) -> None:
        logger.debug("Position %.2f / %.2f", position, duration)

    def on_visualization(levels: list[int]) -> None:
        logger.debug("Bands %s", levels)

    session = SoundSession(
        transport,
        scheduler,
        PlayerCallbacks(
            on_playing=on_playing,
            on_visualization_change=on_visualization,
            on_finished_playing=app.quit,
            on_loading=lambda: logger.info("Loading %s", sys.argv[1]),
            on_load=lambda: logger.info("Duration %.2fs", transport.duration),
        ),
        sample_rate=DEFAULT_SAMPLE_RATE,
        channels=DEFAULT_CHANNELS,
    )
    config = PlayerConfig(
        url=sys.argv[1],
        play_status=PlaybackStatus.PLAYING,
        volume=safe_float(os.environ.get("SOUNDCHAIN_VOLUME", "80"), 80.0),
        equalizer=EqualizerConfig.from_mapping(DEFAULT_EQUALIZER),
        pre_amp=safe_float(os.environ.get("SOUNDCHAIN_PREAMP", "0"), 0.0),
        stereo_pan=safe_float(os.environ.get("SOUNDCHAIN_PAN", "0"), 0.0),
    )
    session.initialize(config, transport.source, transport.destination)
    app.aboutToQuit.connect(session.teardown)
    app.aboutToQuit.connect(transport.close)

    sys.exit(app.exec())


if __name__ == "__main__":
    main()
