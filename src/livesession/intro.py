"""
Intro sequencing: gate exposure of the outbound stream behind an intro video.

Phases:
    setup --start()--> intro --on_intro_playback_end()--> live
    setup --start()--> live                  (no intro configured / already played)
    any   --reset()--> setup

Viewers never see setup frames: the combined stream is handed to on_expose()
exactly once per start, at the moment the sequencer enters `live`.

Custom intros are probed with PyAV and validated against IntroLimits before
they replace the current selection. A rejected upload leaves the previous
selection (normally the default intro) untouched.
"""

import asyncio
import logging
import os
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Optional, Union

import av
from av.error import FFmpegError

from .config import IntroLimits, SessionSettings
from .errors import EmptySourceSetError, InvalidStateError, ValidationError

if TYPE_CHECKING:
    from .compositor import CombinedStream

logger = logging.getLogger(__name__)


class IntroPhase(str, Enum):
    SETUP = 'setup'
    INTRO = 'intro'
    LIVE = 'live'


class IntroSource(str, Enum):
    DEFAULT = 'default'
    CUSTOM = 'custom'


@dataclass(frozen=True)
class IntroConfig:
    """
    The intro selected for the next stream start.

    Attributes:
        source: Default animated intro or a user upload
        url: Where the player loads the intro from
        duration_seconds: Known duration (custom intros only)
        filename: Original upload name (custom intros only)
    """
    source: IntroSource
    url: str
    duration_seconds: Optional[float] = None
    filename: Optional[str] = None


@dataclass
class IntroCandidate:
    """
    Metadata of an uploaded intro file, before acceptance.

    Attributes:
        filename: Upload file name
        size_bytes: File size
        duration_seconds: Playback duration (None if unreadable)
        mime_type: Declared MIME type, if the client sent one
        container: Demuxer name reported by FFmpeg
        video_codec: Codec of the first video stream
    """
    filename: str
    size_bytes: int
    duration_seconds: Optional[float]
    mime_type: Optional[str] = None
    container: Optional[str] = None
    video_codec: Optional[str] = None


def probe_intro_file(path: Union[str, Path], mime_type: Optional[str] = None) -> IntroCandidate:
    """
    Read container, codec and duration of a video file with PyAV.

    Unreadable files produce a candidate without container/duration, which
    validate_intro() rejects.

    Args:
        path: Video file to inspect
        mime_type: MIME type declared by the uploader, if any
    """
    path = Path(path)
    size = path.stat().st_size
    try:
        container = av.open(str(path))
    except (FFmpegError, OSError) as e:
        logger.warning("Could not open intro %s: %s", path.name, e)
        return IntroCandidate(path.name, size, None, mime_type=mime_type)

    try:
        video_codec = None
        duration = None
        if container.streams.video:
            stream = container.streams.video[0]
            video_codec = stream.codec_context.name
            if stream.duration is not None and stream.time_base is not None:
                duration = float(stream.duration * stream.time_base)
        if duration is None and container.duration is not None:
            duration = container.duration / av.time_base
        return IntroCandidate(
            filename=path.name,
            size_bytes=size,
            duration_seconds=duration,
            mime_type=mime_type,
            container=container.format.name,
            video_codec=video_codec,
        )
    finally:
        container.close()


def validate_intro(candidate: IntroCandidate, limits: Optional[IntroLimits] = None) -> None:
    """
    Check a candidate against the intro limits.

    Checks run in order: format, size, duration.

    Raises:
        ValidationError: With a user-facing reason and the failing field
    """
    limits = limits or IntroLimits()

    if candidate.mime_type is not None and candidate.mime_type not in limits.allowed_mime_types:
        raise ValidationError("Only MP4 videos are allowed", field='format')
    if candidate.mime_type is None and candidate.container is None:
        raise ValidationError("Could not read the video file", field='format')
    if candidate.container is not None and candidate.container not in limits.allowed_containers:
        raise ValidationError("Only MP4 videos are allowed", field='format')
    if candidate.video_codec is not None and candidate.video_codec not in limits.allowed_video_codecs:
        raise ValidationError(
            f"Unsupported video codec '{candidate.video_codec}'", field='format'
        )

    if candidate.size_bytes > limits.max_size_bytes:
        max_mb = limits.max_size_bytes // (1024 * 1024)
        raise ValidationError(f"The file is too large. Maximum {max_mb}MB.", field='size')

    if candidate.duration_seconds is None:
        raise ValidationError("Could not read the video duration", field='duration')
    if candidate.duration_seconds > limits.max_duration_seconds:
        max_minutes = limits.max_duration_seconds / 60
        raise ValidationError(
            f"The video is too long. Maximum {max_minutes:g} minutes.", field='duration'
        )


class IntroUpload:
    """
    Copy an accepted intro into the upload directory, reporting real progress.

    Progress is the fraction of bytes written, reported after every chunk,
    monotonic and ending at exactly 1.0.

    Example:
        upload = IntroUpload('intro.mp4', 'uploads/intros',
                             on_progress=lambda p: print(f"{p:.0%}"))
        destination = await upload.run()
    """

    def __init__(
        self,
        source_path: Union[str, Path],
        upload_dir: Union[str, Path],
        chunk_size: int = 1024 * 1024,
        on_progress: Optional[Callable[[float], None]] = None,
    ):
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self.source_path = Path(source_path)
        self.upload_dir = Path(upload_dir)
        self.chunk_size = chunk_size
        self.on_progress = on_progress
        self.total_bytes = self.source_path.stat().st_size
        self.bytes_sent = 0
        self.finished = False
        self.destination = self.upload_dir / f"{uuid.uuid4().hex}{self.source_path.suffix}"

    @property
    def progress(self) -> float:
        if self.total_bytes == 0:
            return 1.0 if self.finished else 0.0
        return self.bytes_sent / self.total_bytes

    async def run(self) -> Path:
        """
        Perform the copy.

        Returns:
            Path of the uploaded file

        Raises:
            OSError: On read/write failure (the partial file is removed)
        """
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        try:
            with open(self.source_path, 'rb') as src, open(self.destination, 'wb') as dst:
                while True:
                    chunk = await asyncio.to_thread(src.read, self.chunk_size)
                    if not chunk:
                        break
                    await asyncio.to_thread(dst.write, chunk)
                    self.bytes_sent += len(chunk)
                    self._report(self.bytes_sent / self.total_bytes)
        except BaseException:
            if self.destination.exists():
                os.remove(self.destination)
            raise

        self.finished = True
        if self.total_bytes == 0:
            self._report(1.0)
        logger.info("Uploaded intro %s (%d bytes)", self.destination.name, self.bytes_sent)
        return self.destination

    def _report(self, fraction: float) -> None:
        if self.on_progress is not None:
            self.on_progress(min(1.0, fraction))


class IntroSequencer:
    """
    Three-phase state machine gating stream exposure.

    Args:
        limits: Custom intro acceptance limits
        default_intro_url: URL of the built-in animated intro
        use_default_intro: Start with the default intro selected
        on_expose: Called with the stream when it becomes visible to viewers
        on_phase_change: Called with (old_phase, new_phase)

    Example:
        sequencer = IntroSequencer(on_expose=transport.on_stream_ready)
        sequencer.start(stream)           # -> intro, nothing exposed yet
        sequencer.on_intro_playback_end() # -> live, stream exposed now
        sequencer.reset()                 # -> setup (stream stopped)
    """

    def __init__(
        self,
        limits: Optional[IntroLimits] = None,
        default_intro_url: str = SessionSettings.default_intro_url,
        use_default_intro: bool = True,
        on_expose: Optional[Callable[['CombinedStream'], None]] = None,
        on_phase_change: Optional[Callable[[IntroPhase, IntroPhase], None]] = None,
    ):
        self.limits = limits or IntroLimits()
        self.default_intro_url = default_intro_url
        self.on_expose = on_expose
        self.on_phase_change = on_phase_change

        self.phase = IntroPhase.SETUP
        self.intro_ended = False
        self.intro_config: Optional[IntroConfig] = None
        self.exposed_stream: Optional['CombinedStream'] = None
        self._held_stream: Optional['CombinedStream'] = None

        if use_default_intro:
            self.configure_default()

    # ------------------------------------------------------------------
    # Intro selection
    # ------------------------------------------------------------------

    def configure_default(self) -> IntroConfig:
        """Select the built-in animated intro."""
        self.intro_config = IntroConfig(IntroSource.DEFAULT, self.default_intro_url)
        return self.intro_config

    def configure_custom(self, candidate: IntroCandidate, url: str) -> IntroConfig:
        """
        Validate and select an uploaded intro.

        Raises:
            ValidationError: The candidate is rejected; the previous selection
                stays in place
        """
        try:
            validate_intro(candidate, self.limits)
        except ValidationError as e:
            logger.warning("Rejected intro %s: %s", candidate.filename, e.reason)
            raise
        self.intro_config = IntroConfig(
            IntroSource.CUSTOM, url,
            duration_seconds=candidate.duration_seconds,
            filename=candidate.filename,
        )
        logger.info("Custom intro selected: %s", candidate.filename)
        return self.intro_config

    async def upload_custom(
        self,
        path: Union[str, Path],
        upload_dir: Union[str, Path],
        mime_type: Optional[str] = None,
        chunk_size: int = 1024 * 1024,
        on_progress: Optional[Callable[[float], None]] = None,
    ) -> IntroConfig:
        """
        Probe, validate, upload and select a custom intro.

        Validation happens before any byte is copied. Any failure leaves the
        current selection as it was.
        """
        candidate = await asyncio.to_thread(probe_intro_file, path, mime_type)
        validate_intro(candidate, self.limits)
        upload = IntroUpload(path, upload_dir, chunk_size=chunk_size, on_progress=on_progress)
        destination = await upload.run()
        return self.configure_custom(candidate, destination.as_posix())

    def clear_custom(self) -> IntroConfig:
        """Drop a custom intro and fall back to the default one."""
        return self.configure_default()

    def disable_intro(self) -> None:
        """Go live immediately on the next start."""
        self.intro_config = None

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def start(self, stream: 'CombinedStream') -> IntroPhase:
        """
        Begin streaming.

        Enters `intro` (stream held back) if an intro is configured and has
        not played yet; otherwise enters `live` and exposes the stream.

        Raises:
            EmptySourceSetError: No stream to start with
            InvalidStateError: Not in `setup`
        """
        if stream is None:
            raise EmptySourceSetError("Cannot start without a combined stream")
        if self.phase != IntroPhase.SETUP:
            raise InvalidStateError(f"start() requires setup phase, currently {self.phase.value}")

        if self.intro_config is not None and not self.intro_ended:
            self._held_stream = stream
            self._set_phase(IntroPhase.INTRO)
            logger.info("Playing %s intro before going live", self.intro_config.source.value)
        else:
            self._go_live(stream)
        return self.phase

    def on_intro_playback_end(self) -> bool:
        """
        Intro finished playing: go live and expose the held stream.

        Returns:
            True if the transition happened, False if not in `intro` (no-op)
        """
        if self.phase != IntroPhase.INTRO:
            logger.debug("Ignoring intro end in phase %s", self.phase.value)
            return False
        self.intro_ended = True
        stream, self._held_stream = self._held_stream, None
        self._go_live(stream)
        return True

    def replace_stream(self, stream: 'CombinedStream') -> None:
        """
        Swap in a recomposed stream.

        While in `intro` the new stream is held; in `live` it is exposed at
        once. In `setup` there is nothing to replace.
        """
        if self.phase == IntroPhase.INTRO:
            self._held_stream = stream
        elif self.phase == IntroPhase.LIVE:
            self._expose(stream)

    def reset(self) -> None:
        """Return to `setup` from any phase (stream stopped)."""
        self._held_stream = None
        self.exposed_stream = None
        self.intro_ended = False
        self._set_phase(IntroPhase.SETUP)

    @property
    def held_stream(self) -> Optional['CombinedStream']:
        """Stream waiting for the intro to finish."""
        return self._held_stream

    def _go_live(self, stream: 'CombinedStream') -> None:
        self._set_phase(IntroPhase.LIVE)
        self._expose(stream)

    def _expose(self, stream: 'CombinedStream') -> None:
        self.exposed_stream = stream
        logger.info("Exposing %s to viewers", getattr(stream, 'id', stream))
        if self.on_expose is not None:
            self.on_expose(stream)

    def _set_phase(self, phase: IntroPhase) -> None:
        old, self.phase = self.phase, phase
        if old != phase:
            logger.debug("Intro phase %s -> %s", old.value, phase.value)
            if self.on_phase_change is not None:
                self.on_phase_change(old, phase)
