"""Local media acquisition."""

from abc import abstractmethod
from typing import Any, Optional, Protocol, Sequence, runtime_checkable

import av
import structlog
from aiortc.contrib.media import MediaPlayer, MediaRelay

from livesignal.core.errors import MediaUnavailable


logger = structlog.get_logger(__name__)


@runtime_checkable
class MediaSource(Protocol):
    """Provider of local tracks for a session."""

    @abstractmethod
    async def acquire(self) -> list[Any]:
        """Acquire tracks for one session.

        Raises:
            MediaUnavailable: If the capture device is missing or denied
        """
        ...

    @abstractmethod
    async def release(self) -> None:
        """Stop capturing."""
        ...


class StaticMediaSource:
    """Hands out a fixed list of already-created tracks."""

    def __init__(self, tracks: Sequence[Any]) -> None:
        self._tracks = list(tracks)
        self.acquired = 0

    async def acquire(self) -> list[Any]:
        self.acquired += 1
        return list(self._tracks)

    async def release(self) -> None:
        self._tracks = []


class PlayerMediaSource:
    """Media source backed by an ffmpeg input (file, device or stream URL).

    The input is opened on first acquisition. Each acquisition receives relayed
    copies of the player's tracks, so one capture can feed many sessions.
    """

    def __init__(
        self,
        file: str,
        format: Optional[str] = None,
        options: Optional[dict[str, str]] = None,
        audio: bool = True,
        video: bool = True
    ) -> None:
        """Initialize player media source.

        Args:
            file: Path, device name or URL understood by ffmpeg
            format: ffmpeg input format (e.g. "v4l2", "pulse")
            options: ffmpeg input options
            audio: Include the audio track if the input has one
            video: Include the video track if the input has one
        """
        self._file = file
        self._format = format
        self._options = options or {}
        self._audio = audio
        self._video = video
        self._player: Optional[MediaPlayer] = None
        self._relay = MediaRelay()

    async def acquire(self) -> list[Any]:
        if self._player is None:
            try:
                self._player = MediaPlayer(self._file, format=self._format, options=self._options)
            except (OSError, av.error.FFmpegError) as e:
                raise MediaUnavailable(f"Cannot open media input: {e}", {"file": self._file, "format": self._format})
            logger.info("Media input opened", file=self._file, format=self._format)

        tracks = []
        if self._audio and self._player.audio is not None:
            tracks.append(self._relay.subscribe(self._player.audio))
        if self._video and self._player.video is not None:
            tracks.append(self._relay.subscribe(self._player.video))

        if not tracks:
            raise MediaUnavailable("Media input has no usable tracks", {"file": self._file})

        logger.debug("Media tracks acquired", file=self._file, kinds=[t.kind for t in tracks])
        return tracks

    async def release(self) -> None:
        if self._player is None:
            return

        for track in (self._player.audio, self._player.video):
            if track is not None:
                track.stop()
        self._player = None
        logger.info("Media input released", file=self._file)
