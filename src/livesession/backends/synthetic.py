"""
SyntheticMediaBackend - Generated capture devices for tests and demos.

This backend fakes a platform media layer. Cameras and screens produce test
pattern frames (SMPTE bars, gradients, moving box), microphones and screen
audio produce a sine tone. Every behaviour of a real platform that the session
core has to cope with can be switched on:

- permission denied per media kind
- screen share granted without system audio
- devices disappearing between enumeration and acquisition
- unsatisfiable exact constraints
- labels hidden until permission is granted
- acquisition latency (to exercise overlapping start/stop)
- failure of the N-th acquisition attempt
"""

import asyncio
import logging
from typing import Dict, Iterable, List, Literal, Optional, Set

import numpy as np

from ..base import DeviceInfo, MediaBackend
from ..errors import DeviceNotFoundError, OverconstrainedError, PermissionDenied
from ..media import Constraints, MediaKind, MediaTrack, TrackKind
from ..plugins import register_backend

logger = logging.getLogger(__name__)

Pattern = Literal['smpte_bars', 'color_bars', 'solid', 'gradient', 'checkerboard', 'moving_box']


@register_backend('synthetic')
class SyntheticMediaBackend(MediaBackend):
    """
    Backend that generates media instead of opening hardware.

    Args:
        cameras: Mapping of device id -> label
        microphones: Mapping of device id -> label
        deny: Media kinds for which the user refuses permission
        deny_screen_audio: Screen share succeeds but without an audio track
        max_width: Largest frame width the fake cameras support
        max_height: Largest frame height the fake cameras support
        labels_require_permission: Hide labels until request_permission() succeeds
        latency: Seconds each acquisition takes
        fail_on_attempt: 1-based acquisition attempt that fails as if the device
            could not be started (e.g. 2 fails the microphone of camera+mic)
        camera_pattern: Test pattern for camera tracks
        screen_pattern: Test pattern for screen tracks
        sample_rate: Audio sample rate
        buffer_size: Audio samples per buffer

    Example:
        backend = SyntheticMediaBackend(deny_screen_audio=True)
        tracks = await backend.get_display_media(Constraints())
        assert [t.kind for t in tracks] == [TrackKind.VIDEO]
    """

    def __init__(
        self,
        cameras: Optional[Dict[str, str]] = None,
        microphones: Optional[Dict[str, str]] = None,
        deny: Iterable[MediaKind] = (),
        deny_screen_audio: bool = False,
        max_width: int = 3840,
        max_height: int = 2160,
        labels_require_permission: bool = True,
        latency: float = 0.0,
        fail_on_attempt: Optional[int] = None,
        camera_pattern: Pattern = 'moving_box',
        screen_pattern: Pattern = 'gradient',
        color: tuple[int, int, int] = (128, 128, 128),
        sample_rate: int = 48000,
        buffer_size: int = 1024,
    ):
        self.cameras = dict(cameras) if cameras is not None else {'cam-0': 'Integrated Camera'}
        self.microphones = (
            dict(microphones) if microphones is not None else {'mic-0': 'Built-in Microphone'}
        )
        self.deny: Set[MediaKind] = {MediaKind(k) for k in deny}
        self.deny_screen_audio = deny_screen_audio
        self.max_width = max_width
        self.max_height = max_height
        self.labels_require_permission = labels_require_permission
        self.latency = latency
        self.fail_on_attempt = fail_on_attempt
        self.camera_pattern = camera_pattern
        self.screen_pattern = screen_pattern
        self.color = color
        self.sample_rate = sample_rate
        self.buffer_size = buffer_size

        self._granted: Set[MediaKind] = set()
        self._open: Dict[str, MediaTrack] = {}
        self.acquisitions = 0
        self.attempts = 0

    # ------------------------------------------------------------------
    # MediaBackend interface
    # ------------------------------------------------------------------

    async def request_permission(self, kinds: List[MediaKind]) -> bool:
        kinds = [MediaKind(k) for k in kinds]
        if any(k in self.deny for k in kinds):
            return False
        self._granted.update(kinds)
        return True

    async def enumerate_devices(self) -> List[DeviceInfo]:
        devices = []
        for device_id, label in self.cameras.items():
            visible = self._label_visible(MediaKind.CAMERA)
            devices.append(DeviceInfo(device_id, MediaKind.CAMERA, label if visible else ''))
        for device_id, label in self.microphones.items():
            visible = self._label_visible(MediaKind.MICROPHONE)
            devices.append(DeviceInfo(device_id, MediaKind.MICROPHONE, label if visible else ''))
        return devices

    async def get_user_media(
        self,
        kind: MediaKind,
        device_id: Optional[str],
        constraints: Constraints
    ) -> List[MediaTrack]:
        kind = MediaKind(kind)
        if kind == MediaKind.SCREEN:
            raise ValueError("Use get_display_media() for screen capture")

        await self._simulate_latency()
        self._check_failure(kind)

        if kind in self.deny:
            raise PermissionDenied(f"Permission denied for {kind.value}")
        self._granted.add(kind)

        devices = self.cameras if kind == MediaKind.CAMERA else self.microphones
        if not devices:
            raise DeviceNotFoundError(f"No {kind.value} available")
        if device_id is None:
            device_id = next(iter(devices))
        if device_id not in devices:
            raise DeviceNotFoundError(f"{kind.value} '{device_id}' not found", device_id=device_id)

        label = devices[device_id]
        if kind == MediaKind.CAMERA:
            width, height = self._frame_size(constraints)
            track = self._open_track(
                TrackKind.VIDEO, label, self._video_producer(self.camera_pattern, width, height),
                {'device_id': device_id, 'width': width, 'height': height},
            )
        else:
            track = self._open_track(
                TrackKind.AUDIO, label, self._audio_producer(440.0),
                {'device_id': device_id, 'sample_rate': self.sample_rate},
            )
        self.acquisitions += 1
        return [track]

    async def get_display_media(self, constraints: Constraints) -> List[MediaTrack]:
        await self._simulate_latency()
        self._check_failure(MediaKind.SCREEN)

        if MediaKind.SCREEN in self.deny:
            raise PermissionDenied("Permission denied for screen capture")

        width, height = self._frame_size(constraints)
        tracks = [self._open_track(
            TrackKind.VIDEO, 'Screen 1', self._video_producer(self.screen_pattern, width, height),
            {'width': width, 'height': height, 'display_surface': 'monitor'},
        )]
        if constraints.audio is not None and not self.deny_screen_audio:
            tracks.append(self._open_track(
                TrackKind.AUDIO, 'System Audio', self._audio_producer(220.0),
                {'sample_rate': self.sample_rate},
            ))
        self.acquisitions += 1
        return tracks

    @property
    def open_handles(self) -> int:
        return len(self._open)

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def unplug(self, device_id: str) -> None:
        """Remove a device and end any of its live tracks."""
        self.cameras.pop(device_id, None)
        self.microphones.pop(device_id, None)
        for track in list(self._open.values()):
            if track.settings.get('device_id') == device_id:
                track.end()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _label_visible(self, kind: MediaKind) -> bool:
        return not self.labels_require_permission or kind in self._granted

    async def _simulate_latency(self) -> None:
        if self.latency > 0:
            await asyncio.sleep(self.latency)

    def _check_failure(self, kind: MediaKind) -> None:
        self.attempts += 1
        if self.attempts == self.fail_on_attempt:
            raise DeviceNotFoundError(f"Could not start {kind.value} (attempt {self.attempts})")

    def _frame_size(self, constraints: Constraints) -> tuple[int, int]:
        video = constraints.video
        if video is None:
            return 640, 480
        if video.exact and (video.width > self.max_width or video.height > self.max_height):
            raise OverconstrainedError(
                f"Cannot satisfy exact {video.width}x{video.height} "
                f"(max {self.max_width}x{self.max_height})",
                constraint='width' if video.width > self.max_width else 'height',
            )
        return min(video.width, self.max_width), min(video.height, self.max_height)

    def _open_track(self, kind: TrackKind, label: str, producer, settings: dict) -> MediaTrack:
        track = MediaTrack(kind, label=label, producer=producer, on_stop=self._close_handle,
                           settings=settings)
        self._open[track.id] = track
        logger.debug("Opened %s handle %s (%s)", kind.value, track.id, label)
        return track

    def _close_handle(self, track: MediaTrack) -> None:
        if self._open.pop(track.id, None) is not None:
            logger.debug("Closed handle %s", track.id)

    def _audio_producer(self, frequency: float):
        rate = self.sample_rate
        size = self.buffer_size

        def produce(n: int) -> np.ndarray:
            t = (np.arange(size, dtype=np.float32) + n * size) / rate
            tone = 0.2 * np.sin(2 * np.pi * frequency * t)
            return tone.astype(np.float32).reshape(size, 1)

        return produce

    def _video_producer(self, pattern: Pattern, width: int, height: int):
        generators = {
            'smpte_bars': self._generate_smpte_bars,
            'color_bars': self._generate_color_bars,
            'solid': self._generate_solid,
            'gradient': self._generate_gradient,
            'checkerboard': self._generate_checkerboard,
            'moving_box': self._generate_moving_box,
        }
        if pattern not in generators:
            raise ValueError(f"Unknown pattern: {pattern}")
        generate = generators[pattern]

        def produce(n: int) -> np.ndarray:
            return generate(width, height, n)

        return produce

    def _generate_smpte_bars(self, width: int, height: int, n: int) -> np.ndarray:
        """SMPTE color bars: seven bars on the top 2/3, dark band below."""
        frame = np.zeros((height, width, 3), dtype=np.uint8)
        bar_width = width // 7
        top_height = (height * 2) // 3
        colors_top = [
            (255, 255, 255),  # White
            (255, 255, 0),    # Yellow
            (0, 255, 255),    # Cyan
            (0, 255, 0),      # Green
            (255, 0, 255),    # Magenta
            (255, 0, 0),      # Red
            (0, 0, 255),      # Blue
        ]
        for i, color in enumerate(colors_top):
            x_start = i * bar_width
            x_end = (i + 1) * bar_width if i < 6 else width
            frame[:top_height, x_start:x_end] = color
        frame[top_height:, :] = (16, 16, 16)
        return frame

    def _generate_color_bars(self, width: int, height: int, n: int) -> np.ndarray:
        frame = np.zeros((height, width, 3), dtype=np.uint8)
        bar_width = width // 8
        colors = [
            (0, 0, 0), (255, 0, 0), (0, 255, 0), (0, 0, 255),
            (255, 255, 0), (0, 255, 255), (255, 0, 255), (255, 255, 255),
        ]
        for i, color in enumerate(colors):
            x_start = i * bar_width
            x_end = (i + 1) * bar_width if i < 7 else width
            frame[:, x_start:x_end] = color
        return frame

    def _generate_solid(self, width: int, height: int, n: int) -> np.ndarray:
        return np.full((height, width, 3), self.color, dtype=np.uint8)

    def _generate_gradient(self, width: int, height: int, n: int) -> np.ndarray:
        """Horizontal gradient from black to white."""
        gradient = np.linspace(0, 255, width, dtype=np.uint8)
        frame = np.tile(gradient, (height, 1))
        return np.stack([frame, frame, frame], axis=-1)

    def _generate_checkerboard(self, width: int, height: int, n: int) -> np.ndarray:
        frame = np.zeros((height, width, 3), dtype=np.uint8)
        square_size = max(1, min(width, height) // 8)
        for i in range(0, height, square_size):
            for j in range(0, width, square_size):
                if (i // square_size + j // square_size) % 2 == 0:
                    frame[i:i + square_size, j:j + square_size] = (255, 255, 255)
        return frame

    def _generate_moving_box(self, width: int, height: int, n: int) -> np.ndarray:
        """Red box bouncing around a black frame."""
        frame = np.zeros((height, width, 3), dtype=np.uint8)
        box_size = max(1, min(width, height) // 8)
        t = n / 30.0
        x = int((np.sin(t) + 1) / 2 * (width - box_size))
        y = int((np.cos(t * 1.3) + 1) / 2 * (height - box_size))
        frame[y:y + box_size, x:x + box_size] = (255, 0, 0)
        return frame
