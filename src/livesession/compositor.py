"""
Stream compositor: merge acquired sources into one outbound stream.

This module provides:
- CombinedStream: the set of tracks actually transmitted to viewers
- StreamCompositor: builds CombinedStreams from MediaSources and renders the
  host preview (screen share with the host camera as a round inset)

Composition never mutates an existing CombinedStream. Adding a source after
the stream started (e.g. screen share after camera) produces a new
CombinedStream; the caller releases the previous one.
"""

import itertools
import logging
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import cv2
import numpy as np
from numpy.typing import NDArray

from .errors import EmptySourceSetError
from .media import MediaKind, MediaSource, MediaTrack, TrackKind

logger = logging.getLogger(__name__)

_stream_ids = itertools.count(1)


class CombinedStream:
    """
    Tracks drawn from the acquired sources at the moment of composition.

    Attributes:
        id: Stream identifier
        tracks: Tracks in this stream (empty once released)
        stopped: True after stop()
        released: True after release() or stop()
    """

    def __init__(self, tracks: Iterable[MediaTrack], kinds: Dict[str, MediaKind]):
        self.id = f"stream-{next(_stream_ids)}"
        self.tracks: Tuple[MediaTrack, ...] = tuple(tracks)
        self._kinds = dict(kinds)
        self.stopped = False
        self.released = False

    @property
    def video_tracks(self) -> List[MediaTrack]:
        return [t for t in self.tracks if t.kind == TrackKind.VIDEO]

    @property
    def audio_tracks(self) -> List[MediaTrack]:
        return [t for t in self.tracks if t.kind == TrackKind.AUDIO]

    @property
    def has_video(self) -> bool:
        return bool(self.video_tracks)

    @property
    def has_audio(self) -> bool:
        return bool(self.audio_tracks)

    @property
    def degraded_audio(self) -> bool:
        """Video is present but no audio track made it into the stream."""
        return self.has_video and not self.has_audio

    def source_kind(self, track: MediaTrack) -> Optional[MediaKind]:
        """Which kind of source a track came from."""
        return self._kinds.get(track.id)

    def tracks_from(self, kind: MediaKind) -> List[MediaTrack]:
        return [t for t in self.tracks if self._kinds.get(t.id) == kind]

    def release(self) -> None:
        """
        Detach from the tracks without stopping them.

        Used when a newer CombinedStream replaces this one; the tracks still
        belong to their sources (and possibly to the newer stream).
        """
        self.tracks = ()
        self.released = True

    def stop(self) -> None:
        """Stop every track in the stream (stream end). Idempotent."""
        if self.stopped:
            return
        for track in self.tracks:
            track.stop()
        self.stopped = True
        self.released = True
        logger.info("Stopped %s", self.id)

    def __repr__(self) -> str:
        return (
            f"<CombinedStream id={self.id} video={len(self.video_tracks)} "
            f"audio={len(self.audio_tracks)}>"
        )


class StreamCompositor:
    """
    Builds CombinedStreams and renders the host preview.

    Args:
        on_degraded_audio: Called with a stream that has video but no audio
        inset_scale: Inset width as a fraction of the primary frame width
        inset_margin: Distance in pixels between inset and frame corner

    Example:
        compositor = StreamCompositor()
        stream = compositor.combine([camera, microphone])
        assert stream.has_video and stream.has_audio

        screen_stream = compositor.recompose(stream, [screen])
        stream.release()
    """

    def __init__(
        self,
        on_degraded_audio: Optional[Callable[[CombinedStream], None]] = None,
        inset_scale: float = 0.25,
        inset_margin: int = 16,
    ):
        self.on_degraded_audio = on_degraded_audio
        self.inset_scale = inset_scale
        self.inset_margin = inset_margin

    def combine(
        self,
        sources: Iterable[MediaSource],
        include_muted: bool = False
    ) -> CombinedStream:
        """
        Flatten the live tracks of all enabled sources into one stream.

        Args:
            sources: Acquired sources
            include_muted: Keep sources muted in place (their tracks are
                transmitted disabled)

        Raises:
            EmptySourceSetError: If no enabled source carries a live track
        """
        tracks: List[MediaTrack] = []
        kinds: Dict[str, MediaKind] = {}
        for source in sources:
            if source.released or not (source.enabled or include_muted):
                continue
            for track in source.live_tracks:
                tracks.append(track)
                kinds[track.id] = source.kind

        if not tracks:
            raise EmptySourceSetError("No streams available to transmit")

        stream = CombinedStream(tracks, kinds)
        logger.info(
            "Combined %s: %d video track(s), %d audio track(s)",
            stream.id, len(stream.video_tracks), len(stream.audio_tracks)
        )
        if stream.degraded_audio:
            logger.warning("%s has video but no audio", stream.id)
            if self.on_degraded_audio is not None:
                self.on_degraded_audio(stream)
        return stream

    def recompose(
        self,
        previous: Optional[CombinedStream],
        sources: Iterable[MediaSource],
        include_muted: bool = False
    ) -> CombinedStream:
        """
        Build a replacement stream after the source set changed.

        The previous stream is left untouched; the caller must release it
        once the new one is in place. If composition fails, the previous
        stream is still valid.
        """
        stream = self.combine(sources, include_muted=include_muted)
        if previous is not None:
            logger.debug("%s replaces %s", stream.id, previous.id)
        return stream

    # ------------------------------------------------------------------
    # Preview rendering
    # ------------------------------------------------------------------

    def render(
        self,
        stream: CombinedStream,
        inset: Optional[MediaTrack] = None
    ) -> Optional[NDArray[np.uint8]]:
        """
        Render one preview frame of a stream.

        The primary picture is the screen share if present, otherwise the
        camera. An inset track (the host camera during screen share) is drawn
        as a circle in the bottom-right corner.

        Returns:
            RGB frame (H, W, 3) uint8, or None if no video frame is available
        """
        primary_tracks = stream.tracks_from(MediaKind.SCREEN) or stream.video_tracks
        primary = next((t for t in primary_tracks if t.kind == TrackKind.VIDEO), None)
        if primary is None:
            return None
        frame = primary.read_frame()
        if frame is None:
            return None
        if inset is not None:
            inset_frame = inset.read_frame()
            if inset_frame is not None:
                return self.compose_frame(frame, inset_frame)
        return frame

    def compose_frame(
        self,
        primary: NDArray[np.uint8],
        inset: NDArray[np.uint8]
    ) -> NDArray[np.uint8]:
        """
        Draw an inset picture as a circle over the primary picture.

        Args:
            primary: Primary RGB frame (H, W, 3) uint8
            inset: Inset RGB frame (h, w, 3) uint8, any size

        Returns:
            Composited RGB frame with the primary frame's shape
        """
        height, width = primary.shape[:2]
        size = max(1, int(min(width, height) * self.inset_scale))
        size = min(size, width - self.inset_margin, height - self.inset_margin)
        if size <= 0:
            return primary

        overlay = np.zeros((height, width, 4), dtype=np.uint8)
        x = width - size - self.inset_margin
        y = height - size - self.inset_margin
        overlay[y:y + size, x:x + size, :3] = self._resize_frame(self._square_crop(inset), size, size)
        overlay[y:y + size, x:x + size, 3] = self._circle_mask(size)

        background = self._rgb_to_rgba(primary)
        return self._alpha_blend(background, overlay)[:, :, :3]

    def _square_crop(self, frame: NDArray[np.uint8]) -> NDArray[np.uint8]:
        h, w = frame.shape[:2]
        side = min(h, w)
        top = (h - side) // 2
        left = (w - side) // 2
        return frame[top:top + side, left:left + side]

    def _circle_mask(self, size: int) -> NDArray[np.uint8]:
        """Opaque disc on a transparent square."""
        coords = np.arange(size, dtype=np.float32) - (size - 1) / 2.0
        distance = np.sqrt(coords[np.newaxis, :] ** 2 + coords[:, np.newaxis] ** 2)
        return np.where(distance <= size / 2.0, 255, 0).astype(np.uint8)

    def _rgb_to_rgba(self, rgb: NDArray[np.uint8]) -> NDArray[np.uint8]:
        """
        Convert RGB frame to RGBA (add alpha channel).

        Args:
            rgb: RGB frame (H, W, 3) uint8

        Returns:
            RGBA frame (H, W, 4) uint8
        """
        h, w = rgb.shape[:2]
        rgba = np.empty((h, w, 4), dtype=np.uint8)
        rgba[:, :, :3] = rgb
        rgba[:, :, 3] = 255
        return rgba

    def _resize_frame(
        self,
        frame: NDArray[np.uint8],
        width: int,
        height: int
    ) -> NDArray[np.uint8]:
        """Resize frame to target dimensions."""
        if frame.shape[:2] == (height, width):
            return frame
        return cv2.resize(frame, (width, height), interpolation=cv2.INTER_AREA)

    def _alpha_blend(
        self,
        background: NDArray[np.uint8],
        overlay: NDArray[np.uint8]
    ) -> NDArray[np.uint8]:
        """
        Alpha blend overlay onto background with uint16 arithmetic.

        Args:
            background: Background RGBA frame (H, W, 4) uint8
            overlay: Overlay RGBA frame (H, W, 4) uint8

        Returns:
            Blended RGBA frame (H, W, 4) uint8
        """
        result = np.empty_like(background)

        overlay_alpha = overlay[:, :, 3].astype(np.uint16)
        bg_alpha = background[:, :, 3].astype(np.uint16)

        # result_alpha = overlay_alpha + bg_alpha * (255 - overlay_alpha) / 255
        result[:, :, 3] = (
            overlay_alpha + (bg_alpha * (255 - overlay_alpha)) // 255
        ).astype(np.uint8)

        for c in range(3):
            overlay_c = overlay[:, :, c].astype(np.uint16)
            bg_c = background[:, :, c].astype(np.uint16)
            result[:, :, c] = (
                (overlay_c * overlay_alpha + bg_c * (255 - overlay_alpha)) // 255
            ).astype(np.uint8)

        return result
