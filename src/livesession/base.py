"""
Abstract base classes for the platform boundaries.

This module defines the two interfaces the session core talks to but does not
own:
- MediaBackend: the platform camera/microphone/screen-capture capability
- StreamTransport: the outbound streaming layer that receives the composed
  stream once it is exposed to viewers

Everything between them (capture, composition, intro gating, collaboration)
is implemented in this package.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional

from .media import Constraints, MediaKind, MediaTrack

if TYPE_CHECKING:
    from .compositor import CombinedStream


@dataclass
class DeviceInfo:
    """
    One enumerated capture device.

    Attributes:
        device_id: Stable hardware identifier
        kind: MediaKind.CAMERA or MediaKind.MICROPHONE
        label: Human-readable name (empty until permission is granted)
        group_id: Optional physical-device grouping
    """
    device_id: str
    kind: MediaKind
    label: str = ''
    group_id: Optional[str] = None


class MediaBackend(ABC):
    """
    Abstract platform media capability.

    Backends can be:
    - Browser bridges (getUserMedia / getDisplayMedia over a webview)
    - Native capture (AVFoundation, V4L2, Media Foundation)
    - Synthetic (test patterns for tests and demos)

    All acquisition calls suspend the caller until the platform grants or
    denies the resource. Backends raise livesession.errors exceptions:
    PermissionDenied, DeviceNotFoundError, OverconstrainedError.
    """

    @abstractmethod
    async def request_permission(self, kinds: List[MediaKind]) -> bool:
        """
        Ask the platform for capture permission (may show an OS prompt).

        Returns:
            True if granted, False if denied
        """
        pass

    @abstractmethod
    async def enumerate_devices(self) -> List[DeviceInfo]:
        """
        List capture devices.

        Labels are empty strings unless permission was granted earlier.
        """
        pass

    @abstractmethod
    async def get_user_media(
        self,
        kind: MediaKind,
        device_id: Optional[str],
        constraints: Constraints
    ) -> List[MediaTrack]:
        """
        Open a camera or microphone.

        Args:
            kind: MediaKind.CAMERA or MediaKind.MICROPHONE
            device_id: Exact device to open, or None for the system default
            constraints: Declarative constraints for the track(s)

        Returns:
            Live tracks (one video track for a camera, one audio for a mic)
        """
        pass

    @abstractmethod
    async def get_display_media(self, constraints: Constraints) -> List[MediaTrack]:
        """
        Open a screen capture.

        Returns a video track, plus an audio track when the OS allows
        capturing system audio. Missing audio is not an error.
        """
        pass

    @property
    @abstractmethod
    def open_handles(self) -> int:
        """Number of OS device handles currently open."""
        pass


class StreamTransport(ABC):
    """
    Abstract outbound transport.

    A transport receives the combined stream at the moment it is exposed to
    viewers (after any intro) and is told when the stream ends.

    Transports can be:
    - WebRTC / RTMP publishers
    - Recorders
    - Test doubles collecting calls
    """

    @abstractmethod
    def on_stream_ready(self, stream: 'CombinedStream') -> None:
        """Start sending the given stream to viewers."""
        pass

    @abstractmethod
    def on_stream_end(self) -> None:
        """Stop sending; the stream has been torn down."""
        pass
