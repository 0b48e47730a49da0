"""
Role views: the host and participant sides of a live session.

HostView owns the media pipeline:

    DeviceInventory -> CaptureController -> StreamCompositor -> IntroSequencer
                                                                     |
                                               transport + participant views

ParticipantView only receives the stream once it is exposed, and reaches the
collaboration session through a ParticipantHandle that carries its own id, so
every operation is authorised by the session itself.
"""

import logging
from enum import Enum
from typing import Iterator, List, Optional, Tuple, Union

from .base import MediaBackend, StreamTransport
from .capture import CaptureController
from .collaboration import CollaborationSession, FileNode, NodeKind, TerminalTranscript
from .compositor import CombinedStream, StreamCompositor
from .config import Settings
from .devices import DeviceInventory
from .errors import CaptureInProgressError, EmptySourceSetError, InvalidStateError, LiveSessionError
from .events import DegradedAudio, EventBus, SourceLost, StreamEnded, StreamReady
from .intro import IntroPhase, IntroSequencer
from .media import MediaKind, MediaSource, TrackKind
from .plugins import get_registry

logger = logging.getLogger(__name__)


class StreamType(str, Enum):
    CODE_REVIEW = 'code_review'
    DEBUGGING = 'debugging'
    PROJECT_BUILDING = 'project_building'
    INTERVIEW_PREP = 'interview_prep'
    GENERAL = 'general'
    GAMING = 'gaming'
    MUSIC = 'music'
    TALK = 'talk'


class Layout(str, Enum):
    CODING = 'coding'
    PLAIN = 'plain'


CODING_STREAM_TYPES = frozenset({
    StreamType.CODE_REVIEW,
    StreamType.DEBUGGING,
    StreamType.PROJECT_BUILDING,
    StreamType.INTERVIEW_PREP,
})


def layout_for(stream_type: Union[StreamType, str]) -> Layout:
    """Coding stream types get the editor/terminal layout, the rest a plain stream."""
    if StreamType(stream_type) in CODING_STREAM_TYPES:
        return Layout.CODING
    return Layout.PLAIN


class ParticipantHandle:
    """Session operations a participant may call, bound to its id."""

    def __init__(self, session: CollaborationSession, participant_id: str):
        self._session = session
        self.participant_id = participant_id

    def read_file(self, file_id: str) -> str:
        return self._session.read_file(file_id)

    def get_node(self, node_id: str) -> FileNode:
        return self._session.get_node(node_id)

    def walk(self, node_id: Optional[str] = None) -> Iterator[Tuple[str, FileNode]]:
        return self._session.walk(node_id)

    def terminal(self, terminal_id: str = 'main') -> TerminalTranscript:
        return self._session.terminal(terminal_id)

    def write_file(self, file_id: str, content: str) -> FileNode:
        return self._session.write_file(file_id, content, actor_id=self.participant_id)

    async def run_command(self, command: str, terminal_id: str = 'main') -> List[str]:
        return await self._session.run_command(command, self.participant_id, terminal_id)

    def raise_hand(self) -> bool:
        return self._session.raise_hand(self.participant_id)


class HostHandle(ParticipantHandle):
    """Participant operations plus the ones reserved for the host."""

    def open_file(self, file_id: str) -> FileNode:
        return self._session.open_file(file_id)

    def close_tab(self, file_id: str) -> None:
        self._session.close_tab(file_id)

    def create_node(self, name: str, kind: NodeKind, parent_id: Optional[str] = None) -> FileNode:
        return self._session.create_node(name, kind, parent_id, actor_id=self.participant_id)

    def delete_node(self, node_id: str) -> List[str]:
        return self._session.delete_node(node_id, actor_id=self.participant_id)

    def new_terminal(self) -> TerminalTranscript:
        return self._session.new_terminal(self.participant_id)

    def set_permission(self, participant_id: str, can_edit: bool):
        return self._session.set_permission(participant_id, can_edit, actor_id=self.participant_id)

    def raise_hand(self) -> bool:
        raise InvalidStateError("The host cannot raise a hand")


class HostView:
    """
    Host side of a live session.

    Args:
        stream_type: Kind of stream; decides the layout
        backend: Media backend instance or registered backend name
        transport: Outbound transport instance or registered transport name
        session: Collaboration session (created for coding layouts if None)
        settings: Runtime settings
        host_id: Participant id of the host in the collaboration session

    Example:
        host = HostView(StreamType.CODE_REVIEW, 'synthetic', CallbackTransport())
        await host.start_stream()          # camera + mic, intro playing
        host.on_intro_playback_end()       # viewers see the stream now
        await host.start_screen_share()    # screen replaces camera, camera inset
        host.set_volume(50)
        host.stop_stream()                 # every device released
    """

    def __init__(
        self,
        stream_type: Union[StreamType, str],
        backend: Union[MediaBackend, str],
        transport: Union[StreamTransport, str],
        session: Optional[CollaborationSession] = None,
        settings: Optional[Settings] = None,
        host_id: str = 'host',
    ):
        self.stream_type = StreamType(stream_type)
        self.layout = layout_for(self.stream_type)
        self.settings = settings or Settings()
        self.host_id = host_id

        registry = get_registry()
        self.backend = registry.create_backend(backend) if isinstance(backend, str) else backend
        self.transport = (
            registry.create_transport(transport) if isinstance(transport, str) else transport
        )

        if session is None and self.layout == Layout.CODING:
            session = CollaborationSession(host_id, settings=self.settings)
        self.session = session
        self.bus = session.bus if session is not None else EventBus()

        self.inventory = DeviceInventory(self.backend)
        self.capture = CaptureController(
            self.backend, self.inventory, on_source_lost=self._on_source_lost
        )
        self.compositor = StreamCompositor(on_degraded_audio=self._on_degraded_audio)
        self.intro = IntroSequencer(
            self.settings.intro,
            default_intro_url=self.settings.session.default_intro_url,
            on_expose=self._on_expose,
        )

        self.stream: Optional[CombinedStream] = None
        self.camera: Optional[MediaSource] = None
        self.microphone: Optional[MediaSource] = None
        self.screen: Optional[MediaSource] = None
        self.inset: Optional[MediaSource] = None

        self.camera_enabled = True
        self.mic_enabled = True
        self.volume = 100
        self.streaming = False
        self.viewers: List['ParticipantView'] = []

        self._starting = False
        self._generation = 0

    @property
    def phase(self) -> IntroPhase:
        return self.intro.phase

    @property
    def screen_sharing(self) -> bool:
        return self.screen is not None

    @property
    def handle(self) -> Optional[HostHandle]:
        """Session operations available to the host (None without a session)."""
        if self.session is None:
            return None
        return HostHandle(self.session, self.host_id)

    def add_viewer(self, viewer: 'ParticipantView') -> None:
        """Attach a participant; it receives the stream once exposed."""
        self.viewers.append(viewer)
        if self.intro.exposed_stream is not None:
            viewer.on_stream_ready(self.intro.exposed_stream)

    def remove_viewer(self, viewer: 'ParticipantView') -> None:
        if viewer in self.viewers:
            self.viewers.remove(viewer)

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    def _begin(self) -> int:
        if self._starting:
            raise CaptureInProgressError("A capture request is already pending")
        self._starting = True
        return self._generation

    def _finish(self, generation: int) -> None:
        if generation == self._generation:
            self._starting = False

    def _cancelled(self, generation: int, sources: List[MediaSource]) -> bool:
        """Release what a request acquired if stop_stream() ran meanwhile."""
        if generation == self._generation:
            return False
        logger.info("Capture finished after stop, releasing %d source(s)", len(sources))
        for source in sources:
            self.capture.release(source)
        return True

    async def start_capture(self) -> CombinedStream:
        """
        Acquire camera and microphone and compose the preview stream.

        Raises:
            CaptureInProgressError: Another start is pending
            PermissionDenied, DeviceNotFoundError, OverconstrainedError:
                Acquisition failed; nothing stays open
            InvalidStateError: stop_stream() was called while acquiring
        """
        generation = self._begin()
        try:
            if self.camera is not None or self.microphone is not None or self.screen is not None:
                raise InvalidStateError("Capture already started")
            await self.inventory.list_devices()
            capture_settings = self.settings.capture
            camera, microphone = await self.capture.acquire_many([
                (MediaKind.CAMERA, None, capture_settings.camera_constraints()),
                (MediaKind.MICROPHONE, None, capture_settings.microphone_constraints()),
            ])
            if self._cancelled(generation, [camera, microphone]):
                raise InvalidStateError("Capture cancelled by stop_stream()")

            self.camera, self.microphone = camera, microphone
            try:
                stream = self._recompose()
            except EmptySourceSetError:
                self._release_media()
                raise
            # Toggled-off devices stay in the stream, muted in place
            if not self.camera_enabled:
                self.capture.set_enabled(camera, False)
            if not self.mic_enabled:
                self.capture.set_enabled(microphone, False)
            return stream
        finally:
            self._finish(generation)

    async def start_screen_share(self) -> CombinedStream:
        """
        Make the screen the primary stream and show the host camera as inset.

        The camera and microphone are released; the inset camera is a small
        video-only capture used for the preview and never transmitted. If the
        OS refuses screen audio, the new stream is flagged as degraded.
        """
        generation = self._begin()
        try:
            if self.screen is not None:
                raise InvalidStateError("Screen share already active")
            screen = await self.capture.acquire(
                MediaKind.SCREEN, constraints=self.settings.capture.screen_constraints()
            )
            if self._cancelled(generation, [screen]):
                raise InvalidStateError("Screen share cancelled by stop_stream()")

            inset = None
            if self.camera_enabled:
                try:
                    inset = await self.capture.acquire(
                        MediaKind.CAMERA, constraints=self.settings.capture.inset_constraints()
                    )
                except LiveSessionError as e:
                    logger.warning("Host camera inset unavailable: %s", e)
                if self._cancelled(generation, [s for s in (screen, inset) if s is not None]):
                    raise InvalidStateError("Screen share cancelled by stop_stream()")

            previous = (self.screen, self.inset)
            self.screen, self.inset = screen, inset
            try:
                stream = self._recompose()
            except BaseException:
                self.screen, self.inset = previous
                self.capture.release(screen)
                self.capture.release(inset)
                raise

            if not self.mic_enabled:
                self.capture.set_enabled(screen, False, track_kind=TrackKind.AUDIO)
            self.capture.release(self.camera)
            self.capture.release(self.microphone)
            self.camera = self.microphone = None
            return stream
        finally:
            self._finish(generation)

    async def stop_screen_share(self) -> Optional[CombinedStream]:
        """
        Release the screen and inset and go back to camera + microphone.

        Returns:
            The camera stream, or None if no screen share was active
        """
        if self.screen is None:
            return None
        self.capture.release(self.screen)
        self.capture.release(self.inset)
        self.screen = self.inset = None
        if self.stream is not None:
            self.stream.release()
            self.stream = None
        try:
            return await self.start_capture()
        except BaseException:
            if self.streaming:
                logger.error("Could not return to the camera, ending the stream")
                self.stop_stream()
            raise

    def _transmitted_sources(self) -> List[MediaSource]:
        if self.screen is not None:
            return [self.screen]
        return [s for s in (self.camera, self.microphone) if s is not None]

    def _recompose(self) -> CombinedStream:
        """Replace the current stream with one built from the held sources."""
        previous = self.stream
        stream = self.compositor.recompose(
            previous, self._transmitted_sources(), include_muted=True
        )
        self._apply_volume(stream)
        self.stream = stream
        self.intro.replace_stream(stream)
        if previous is not None:
            previous.release()
        return stream

    def _release_media(self) -> None:
        self.capture.release_all()
        self.camera = self.microphone = self.screen = self.inset = None

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def start_stream(self) -> IntroPhase:
        """
        Go on air: play the intro if one is configured, then expose the stream.

        Captures camera and microphone first if nothing is captured yet.

        Returns:
            IntroPhase.INTRO or IntroPhase.LIVE
        """
        if self.streaming:
            raise InvalidStateError("Already streaming")
        if self.stream is None:
            await self.start_capture()
        if self.session is not None and self.session.closed:
            self.session = CollaborationSession(self.host_id, settings=self.settings, bus=self.bus)
        self.streaming = True
        try:
            return self.intro.start(self.stream)
        except BaseException:
            self.streaming = False
            raise

    def on_intro_playback_end(self) -> bool:
        return self.intro.on_intro_playback_end()

    def stop_stream(self) -> None:
        """
        End the stream and release every device. Idempotent.

        Safe to call while a start is still acquiring: the pending request
        releases whatever it obtains once it resumes.

        Attached viewers are notified and detached; the next start_stream()
        opens a fresh collaboration session, so viewers join it anew.
        """
        self._generation += 1
        self._starting = False

        stream, self.stream = self.stream, None
        if stream is not None:
            stream.stop()
        self._release_media()
        self.intro.reset()

        if not self.streaming:
            return
        self.streaming = False
        self.transport.on_stream_end()
        for viewer in list(self.viewers):
            viewer.on_stream_end()
        self.viewers.clear()
        self.bus.publish(StreamEnded(stream.id if stream is not None else None))
        if self.session is not None:
            self.session.close()
        logger.info("Stream stopped")

    def _on_expose(self, stream: CombinedStream) -> None:
        self.transport.on_stream_ready(stream)
        for viewer in list(self.viewers):
            viewer.on_stream_ready(stream)
        self.bus.publish(StreamReady(stream.id, stream.has_video, stream.has_audio))

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    async def set_camera(self, enabled: bool) -> None:
        """
        Toggle the camera.

        Without screen share the camera track is muted in place. During
        screen share the inset camera is released or re-acquired.
        """
        self.camera_enabled = enabled
        if self.screen is not None:
            if not enabled:
                self.capture.release(self.inset)
                self.inset = None
            elif self.inset is None:
                generation = self._generation
                inset = await self.capture.acquire(
                    MediaKind.CAMERA, constraints=self.settings.capture.inset_constraints()
                )
                if self._cancelled(generation, [inset]):
                    raise InvalidStateError("Camera toggle cancelled by stop_stream()")
                if self.screen is None or self.inset is not None or not self.camera_enabled:
                    # Stale: the share or the toggle changed while acquiring
                    self.capture.release(inset)
                    return
                self.inset = inset
        elif self.camera is not None:
            self.capture.set_enabled(self.camera, enabled)

    def set_mic(self, enabled: bool) -> None:
        """Mute or unmute the transmitted audio in place."""
        self.mic_enabled = enabled
        if self.microphone is not None:
            self.capture.set_enabled(self.microphone, enabled)
        elif self.screen is not None:
            self.capture.set_enabled(self.screen, enabled, track_kind=TrackKind.AUDIO)

    async def set_screen(self, enabled: bool) -> Optional[CombinedStream]:
        if enabled:
            return await self.start_screen_share()
        return await self.stop_screen_share()

    def set_volume(self, volume: int) -> None:
        """
        Set the outbound audio volume.

        Args:
            volume: 0 (silent) to 100 (unchanged)
        """
        if not 0 <= volume <= 100:
            raise ValueError(f"Volume must be between 0 and 100, got {volume}")
        self.volume = volume
        if self.stream is not None:
            self._apply_volume(self.stream)

    def _apply_volume(self, stream: CombinedStream) -> None:
        gain = self.volume / 100
        for track in stream.audio_tracks:
            track.gain = gain

    # ------------------------------------------------------------------
    # Preview and device events
    # ------------------------------------------------------------------

    def render_preview(self):
        """One preview frame: the primary picture with the host camera inset."""
        if self.stream is None:
            return None
        inset_track = None
        if self.inset is not None:
            inset_track = next(
                (t for t in self.inset.tracks if t.kind == TrackKind.VIDEO and t.is_live), None
            )
        return self.compositor.render(self.stream, inset=inset_track)

    def _on_degraded_audio(self, stream: CombinedStream) -> None:
        self.bus.publish(DegradedAudio(stream.id))

    def _on_source_lost(self, source: MediaSource) -> None:
        self.bus.publish(SourceLost(source.kind.value))
        if source is self.inset:
            self.inset = None
            return
        if source is self.screen:
            self.capture.release(self.inset)
            self.screen = self.inset = None
        elif source is self.camera:
            self.camera = None
        elif source is self.microphone:
            self.microphone = None
        else:
            return

        if self.stream is None:
            return
        try:
            self._recompose()
        except EmptySourceSetError:
            logger.warning("No live source left after losing the %s", source.kind.value)


class ParticipantView(StreamTransport):
    """
    Participant side of a live session.

    Media is read-only: `stream` is set only when the host exposes it (after
    any intro). File and terminal operations go through the session, which
    rejects them unless the host granted edit permission.

    Example:
        session.on_participant_joined('p-1', 'Ana')
        viewer = ParticipantView('p-1', session)
        host.add_viewer(viewer)

        viewer.raise_hand()
        await viewer.run_command('npm start')   # PermissionDenied until granted
    """

    def __init__(self, participant_id: str, session: CollaborationSession):
        self.participant_id = participant_id
        self.session = session
        self.handle = ParticipantHandle(session, participant_id)
        self.stream: Optional[CombinedStream] = None

    @property
    def can_edit(self) -> bool:
        return self.session.can_edit(self.participant_id)

    @property
    def hand_raised(self) -> bool:
        participant = self.session.participants.get(self.participant_id)
        return participant is not None and participant.hand_raised

    def on_stream_ready(self, stream: CombinedStream) -> None:
        self.stream = stream

    def on_stream_end(self) -> None:
        self.stream = None

    def read_file(self, file_id: str) -> str:
        return self.handle.read_file(file_id)

    def write_file(self, file_id: str, content: str) -> FileNode:
        return self.handle.write_file(file_id, content)

    async def run_command(self, command: str, terminal_id: str = 'main') -> List[str]:
        return await self.handle.run_command(command, terminal_id)

    def raise_hand(self) -> bool:
        """Toggle the raised hand; returns the new state."""
        return self.handle.raise_hand()
