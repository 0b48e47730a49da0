"""
livesession - Live streaming session core for Python

Capture, composition and intro gating for a host's outbound stream, plus a
shared file tree and terminal for coding streams.

Architecture:
- Devices: enumerate cameras and microphones, keep a selection
- Capture: acquire, mute and release media sources (sole owner of handles)
- Compositor: merge sources into one outbound stream, render the preview
- Intro: setup -> intro -> live state machine gating exposure to viewers
- Collaboration: file tree, terminals and edit permissions for participants
- Views: host and participant sides wiring it all together

Example:
    from livesession import HostView, CallbackTransport, StreamType

    transport = CallbackTransport(on_ready=publish)
    host = HostView(StreamType.DEBUGGING, 'synthetic', transport)

    await host.start_stream()       # intro playing, nothing exposed yet
    host.on_intro_playback_end()    # transport receives the stream
    host.stop_stream()
"""

# Errors
from .errors import (
    LiveSessionError,
    PermissionDenied,
    DeviceNotFoundError,
    NotFoundError,
    OverconstrainedError,
    EmptySourceSetError,
    ValidationError,
    NodeNotFoundError,
    InvalidNodeError,
    ParticipantNotFoundError,
    CaptureInProgressError,
    SessionClosedError,
    InvalidStateError,
)

# Media model and platform boundary
from .media import (
    MediaKind,
    TrackKind,
    ReadyState,
    VideoConstraints,
    AudioConstraints,
    Constraints,
    MediaTrack,
    MediaSource,
)
from .base import DeviceInfo, MediaBackend, StreamTransport
from .plugins import register_backend, register_transport, get_registry

# Configuration
from .config import (
    CaptureSettings,
    IntroLimits,
    SessionSettings,
    Settings,
    configure_logging,
)

# Pipeline
from .devices import DeviceList, DeviceInventory
from .capture import CaptureController, default_constraints
from .compositor import CombinedStream, StreamCompositor
from .intro import (
    IntroPhase,
    IntroSource,
    IntroConfig,
    IntroCandidate,
    IntroUpload,
    IntroSequencer,
    probe_intro_file,
    validate_intro,
)

# Collaboration and events
from .events import (
    Event,
    EventBus,
    EventSubscription,
    ParticipantJoined,
    ParticipantLeft,
    PermissionChanged,
    CodeChanged,
    FileSaved,
    TerminalCommandIssued,
    HandRaised,
    StreamReady,
    StreamEnded,
    DegradedAudio,
    SourceLost,
)
from .collaboration import (
    NodeKind,
    FileNode,
    Participant,
    TerminalTranscript,
    CollaborationSession,
)

# Backends, transports and views (import registers the plugins)
from .backends import SyntheticMediaBackend
from .transports import CallbackTransport, RecordingTransport
from .views import (
    StreamType,
    Layout,
    layout_for,
    HostHandle,
    ParticipantHandle,
    HostView,
    ParticipantView,
)

__version__ = "0.1.0"

__all__ = [
    # Errors
    "LiveSessionError",
    "PermissionDenied",
    "DeviceNotFoundError",
    "NotFoundError",
    "OverconstrainedError",
    "EmptySourceSetError",
    "ValidationError",
    "NodeNotFoundError",
    "InvalidNodeError",
    "ParticipantNotFoundError",
    "CaptureInProgressError",
    "SessionClosedError",
    "InvalidStateError",
    # Media model and platform boundary
    "MediaKind",
    "TrackKind",
    "ReadyState",
    "VideoConstraints",
    "AudioConstraints",
    "Constraints",
    "MediaTrack",
    "MediaSource",
    "DeviceInfo",
    "MediaBackend",
    "StreamTransport",
    "register_backend",
    "register_transport",
    "get_registry",
    # Configuration
    "CaptureSettings",
    "IntroLimits",
    "SessionSettings",
    "Settings",
    "configure_logging",
    # Pipeline
    "DeviceList",
    "DeviceInventory",
    "CaptureController",
    "default_constraints",
    "CombinedStream",
    "StreamCompositor",
    "IntroPhase",
    "IntroSource",
    "IntroConfig",
    "IntroCandidate",
    "IntroUpload",
    "IntroSequencer",
    "probe_intro_file",
    "validate_intro",
    # Collaboration and events
    "Event",
    "EventBus",
    "EventSubscription",
    "ParticipantJoined",
    "ParticipantLeft",
    "PermissionChanged",
    "CodeChanged",
    "FileSaved",
    "TerminalCommandIssued",
    "HandRaised",
    "StreamReady",
    "StreamEnded",
    "DegradedAudio",
    "SourceLost",
    "NodeKind",
    "FileNode",
    "Participant",
    "TerminalTranscript",
    "CollaborationSession",
    # Backends, transports and views
    "SyntheticMediaBackend",
    "CallbackTransport",
    "RecordingTransport",
    "StreamType",
    "Layout",
    "layout_for",
    "HostHandle",
    "ParticipantHandle",
    "HostView",
    "ParticipantView",
]
