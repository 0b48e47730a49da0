"""
Media data model: tracks, sources and capture constraints.

A MediaTrack is one live capture channel (video or audio). A MediaSource groups
the tracks obtained from one acquisition of a camera, microphone or screen.

Muting and releasing are different things:
- set_enabled(False) flips track.enabled; the device keeps capturing
- stop() ends the track and frees the device handle
"""

import itertools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from numpy.typing import NDArray

logger = logging.getLogger(__name__)

_track_ids = itertools.count(1)


class MediaKind(str, Enum):
    """What kind of hardware a source was acquired from."""
    CAMERA = 'camera'
    MICROPHONE = 'microphone'
    SCREEN = 'screen'


class TrackKind(str, Enum):
    VIDEO = 'video'
    AUDIO = 'audio'


class ReadyState(str, Enum):
    LIVE = 'live'
    ENDED = 'ended'


@dataclass
class VideoConstraints:
    """
    Declarative video constraints (ideal values, not hard requirements).

    Attributes:
        width: Ideal frame width
        height: Ideal frame height
        frame_rate: Ideal frames per second
        facing_mode: Optional camera facing ('user', 'environment')
        exact: If True, width/height/frame_rate must be met exactly
    """
    width: int = 1920
    height: int = 1080
    frame_rate: float = 30.0
    facing_mode: Optional[str] = None
    exact: bool = False


@dataclass
class AudioConstraints:
    """Audio processing flags requested from the platform."""
    echo_cancellation: bool = True
    noise_suppression: bool = True
    auto_gain_control: bool = True


@dataclass
class Constraints:
    """
    Constraints for one acquisition.

    A None member means "do not request this track kind".
    """
    video: Optional[VideoConstraints] = field(default_factory=VideoConstraints)
    audio: Optional[AudioConstraints] = field(default_factory=AudioConstraints)


class MediaTrack:
    """
    One capture channel.

    The frame producer is supplied by the backend; read_frame() returns None
    while the track is muted or ended.

    Example:
        track = MediaTrack(TrackKind.VIDEO, label='FaceTime HD Camera',
                           producer=lambda n: np.zeros((720, 1280, 3), np.uint8))
        frame = track.read_frame()
        track.enabled = False   # muted, still live
        track.stop()            # released
    """

    def __init__(
        self,
        kind: TrackKind,
        label: str = '',
        producer: Optional[Callable[[int], NDArray]] = None,
        on_stop: Optional[Callable[['MediaTrack'], None]] = None,
        settings: Optional[dict] = None,
    ):
        self.id = f"track-{next(_track_ids)}"
        self.kind = TrackKind(kind)
        self.label = label
        self.enabled = True
        self.ready_state = ReadyState.LIVE
        self.settings = dict(settings or {})
        self.gain = 1.0
        self._producer = producer
        self._on_stop = on_stop
        self._ended_listeners: List[Callable[['MediaTrack'], None]] = []
        self._frame_number = 0

    @property
    def is_live(self) -> bool:
        return self.ready_state == ReadyState.LIVE

    def read_frame(self) -> Optional[NDArray]:
        """
        Pull the next frame (video) or buffer (audio) from the producer.

        Returns:
            numpy array, or None if the track is muted, ended or has no producer
        """
        if not self.is_live or not self.enabled or self._producer is None:
            return None
        data = self._producer(self._frame_number)
        self._frame_number += 1
        if self.kind == TrackKind.AUDIO and self.gain != 1.0:
            data = (data * self.gain).astype(data.dtype)
        return data

    def add_ended_listener(self, callback: Callable[['MediaTrack'], None]) -> None:
        """Register a callback fired when the device side ends the track."""
        self._ended_listeners.append(callback)

    def stop(self) -> None:
        """Stop the track and release its device handle. Idempotent."""
        if self.ready_state == ReadyState.ENDED:
            return
        self.ready_state = ReadyState.ENDED
        if self._on_stop is not None:
            self._on_stop(self)

    def end(self) -> None:
        """
        End the track from the device side (unplugged, user ended share).

        Unlike stop(), this notifies ended listeners.
        """
        if self.ready_state == ReadyState.ENDED:
            return
        self.stop()
        for callback in list(self._ended_listeners):
            try:
                callback(self)
            except Exception:
                logger.exception("Ended listener failed for %s", self.id)

    def __repr__(self) -> str:
        return (
            f"<MediaTrack id={self.id} kind={self.kind.value} "
            f"enabled={self.enabled} state={self.ready_state.value}>"
        )


@dataclass
class MediaSource:
    """
    Tracks obtained from one acquisition.

    Attributes:
        kind: camera, microphone or screen
        device_id: Hardware id used (None for screen capture / default device)
        tracks: Tracks owned by this source
        enabled: False when muted in place
        released: True once the tracks were stopped by the controller
    """
    kind: MediaKind
    device_id: Optional[str] = None
    tracks: List[MediaTrack] = field(default_factory=list)
    enabled: bool = True
    released: bool = False

    @property
    def live_tracks(self) -> List[MediaTrack]:
        return [t for t in self.tracks if t.is_live]

    @property
    def video_tracks(self) -> List[MediaTrack]:
        return [t for t in self.live_tracks if t.kind == TrackKind.VIDEO]

    @property
    def audio_tracks(self) -> List[MediaTrack]:
        return [t for t in self.live_tracks if t.kind == TrackKind.AUDIO]

    @property
    def is_active(self) -> bool:
        """Acquired, not released, and still carrying a live track."""
        return not self.released and bool(self.live_tracks)

