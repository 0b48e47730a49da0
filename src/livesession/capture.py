"""
Capture controller: acquire, mute and release media sources.

The controller is the only owner of device handles. Everything else receives
MediaSource objects and may read their tracks, but only the controller starts
or stops them.

Failure policy:
- acquisition errors propagate to the caller unchanged
- tracks obtained before a failure are stopped before the error surfaces
- a track ending on the device side (unplugged camera, user pressed "stop
  sharing") is observed and reflected in source state, never raised
"""

import logging
from functools import partial
from typing import Callable, Iterable, List, Optional, Tuple, Union

from .base import MediaBackend
from .devices import DeviceInventory
from .errors import DeviceNotFoundError
from .media import (
    AudioConstraints,
    Constraints,
    MediaKind,
    MediaSource,
    MediaTrack,
    TrackKind,
    VideoConstraints,
)

logger = logging.getLogger(__name__)

AcquireRequest = Union[MediaKind, str, Tuple[MediaKind, Optional[str], Optional[Constraints]]]


def default_constraints(kind: MediaKind) -> Constraints:
    """Constraints used when the caller passes none."""
    kind = MediaKind(kind)
    if kind == MediaKind.CAMERA:
        return Constraints(video=VideoConstraints(), audio=None)
    if kind == MediaKind.MICROPHONE:
        return Constraints(video=None, audio=AudioConstraints())
    return Constraints()


class CaptureController:
    """
    Owns every acquired MediaSource.

    Usage:
        controller = CaptureController(backend, inventory)

        camera = await controller.acquire(MediaKind.CAMERA)
        controller.set_enabled(camera, False)   # muted, camera light stays on
        controller.set_enabled(camera, True)    # instant
        controller.release(camera)              # device closed
        controller.release(camera)              # no-op

    Args:
        backend: Platform media capability
        inventory: Optional device inventory supplying the selected device ids
        on_source_lost: Called with a source whose device ended it
    """

    def __init__(
        self,
        backend: MediaBackend,
        inventory: Optional[DeviceInventory] = None,
        on_source_lost: Optional[Callable[[MediaSource], None]] = None,
    ):
        self.backend = backend
        self.inventory = inventory
        self.on_source_lost = on_source_lost
        self._sources: List[MediaSource] = []

    async def acquire(
        self,
        kind: MediaKind,
        device_id: Optional[str] = None,
        constraints: Optional[Constraints] = None,
    ) -> MediaSource:
        """
        Open one camera, microphone or screen capture.

        Args:
            kind: What to acquire
            device_id: Exact device, or None for the selected/default device
            constraints: Capture constraints (defaults per kind)

        Returns:
            The acquired MediaSource

        Raises:
            PermissionDenied: User or OS refused access
            DeviceNotFoundError: No device of that kind is available
            OverconstrainedError: Constraints cannot be satisfied
        """
        kind = MediaKind(kind)
        constraints = constraints or default_constraints(kind)

        if device_id is None and self.inventory is not None and kind != MediaKind.SCREEN:
            device_id = self.inventory.selected(kind)

        if kind == MediaKind.SCREEN:
            tracks = await self.backend.get_display_media(constraints)
        else:
            try:
                tracks = await self.backend.get_user_media(kind, device_id, constraints)
            except DeviceNotFoundError as e:
                if device_id is None or e.device_id != device_id:
                    raise
                logger.warning(
                    "%s '%s' is gone, falling back to system default", kind.value, device_id
                )
                tracks = await self.backend.get_user_media(kind, None, constraints)

        try:
            if not tracks:
                raise DeviceNotFoundError(f"No {kind.value} tracks were returned")
            source = MediaSource(
                kind=kind,
                device_id=tracks[0].settings.get('device_id', device_id),
                tracks=list(tracks),
            )
            for track in tracks:
                track.add_ended_listener(partial(self._on_track_ended, source))
        except BaseException:
            self._stop_tracks(tracks)
            raise

        self._sources.append(source)
        video = len(source.video_tracks)
        audio = len(source.audio_tracks)
        logger.info("Acquired %s (video=%d, audio=%d)", kind.value, video, audio)
        if kind == MediaKind.CAMERA and video == 0:
            logger.warning("Camera acquisition returned no video track")
        if kind == MediaKind.MICROPHONE and audio == 0:
            logger.warning("Microphone acquisition returned no audio track")
        return source

    async def acquire_many(self, requests: Iterable[AcquireRequest]) -> List[MediaSource]:
        """
        Acquire several sources as one operation (e.g. camera + microphone).

        All-or-nothing: if any acquisition fails, the sources acquired earlier
        in this call are released before the error is re-raised.

        Args:
            requests: Media kinds, or (kind, device_id, constraints) tuples
        """
        acquired: List[MediaSource] = []
        try:
            for request in requests:
                if isinstance(request, tuple):
                    kind, device_id, constraints = request
                else:
                    kind, device_id, constraints = request, None, None
                acquired.append(await self.acquire(kind, device_id, constraints))
        except BaseException:
            for source in acquired:
                self.release(source)
            raise
        return acquired

    def set_enabled(
        self,
        source: MediaSource,
        enabled: bool,
        track_kind: Optional[TrackKind] = None
    ) -> None:
        """
        Mute or unmute a source in place.

        Tracks stay live so re-enabling is instantaneous; use release() to
        actually free the device.

        Args:
            source: Source owned by this controller
            enabled: New state
            track_kind: Only toggle tracks of this kind (e.g. the system
                audio of a screen share). The source itself stays enabled.
        """
        if source.released:
            logger.debug("Ignoring set_enabled on released %s source", source.kind.value)
            return
        if track_kind is None:
            source.enabled = enabled
        for track in source.tracks:
            if track_kind is None or track.kind == track_kind:
                track.enabled = enabled
        logger.info(
            "%s%s %s",
            source.kind.value,
            f" {track_kind.value}" if track_kind is not None else "",
            "enabled" if enabled else "muted",
        )

    def release(self, source: Optional[MediaSource]) -> None:
        """
        Stop all tracks of a source and free its device. Idempotent.
        """
        if source is None or source.released:
            return
        self._stop_tracks(source.tracks)
        source.released = True
        if source in self._sources:
            self._sources.remove(source)
        logger.info("Released %s", source.kind.value)

    def release_all(self) -> None:
        """Release every source this controller owns."""
        for source in list(self._sources):
            self.release(source)

    @property
    def sources(self) -> List[MediaSource]:
        """Sources acquired and not yet released."""
        return list(self._sources)

    @property
    def active_sources(self) -> List[MediaSource]:
        """Held sources that are enabled and still carry live tracks."""
        return [s for s in self._sources if s.enabled and s.is_active]

    def get(self, kind: MediaKind) -> Optional[MediaSource]:
        """Most recently acquired held source of a kind."""
        kind = MediaKind(kind)
        for source in reversed(self._sources):
            if source.kind == kind:
                return source
        return None

    def _stop_tracks(self, tracks: Iterable[MediaTrack]) -> None:
        for track in tracks:
            track.stop()

    def _on_track_ended(self, source: MediaSource, track: MediaTrack) -> None:
        if source.released:
            return
        logger.warning("%s track %s ended unexpectedly", source.kind.value, track.id)
        if track.kind == TrackKind.VIDEO or not source.live_tracks:
            source.enabled = False
            self.release(source)
            if self.on_source_lost is not None:
                try:
                    self.on_source_lost(source)
                except Exception:
                    logger.exception("on_source_lost callback failed")
