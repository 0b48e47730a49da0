"""
Outbound stream transports.

- CallbackTransport: forwards ready/end to plain callables and keeps a log of
  what it was handed (the seam a WebRTC/RTMP publisher plugs into)
- RecordingTransport: encodes the exposed stream to a video file with PyAV
"""

import logging
from typing import Callable, List, Optional

import av
import cv2
import numpy as np

from .base import StreamTransport
from .compositor import CombinedStream, StreamCompositor
from .media import MediaTrack
from .plugins import register_transport

logger = logging.getLogger(__name__)


@register_transport('callback')
class CallbackTransport(StreamTransport):
    """
    Transport that hands the stream to user callbacks.

    Args:
        on_ready: Called with each exposed stream
        on_end: Called when the stream is torn down

    Attributes:
        current: Stream currently being sent, if any
        streams: Every stream exposed so far, in order
        ended: Number of on_stream_end() calls
    """

    def __init__(
        self,
        on_ready: Optional[Callable[[CombinedStream], None]] = None,
        on_end: Optional[Callable[[], None]] = None,
    ):
        self.on_ready = on_ready
        self.on_end = on_end
        self.streams: List[CombinedStream] = []
        self.current: Optional[CombinedStream] = None
        self.ended = 0

    def on_stream_ready(self, stream: CombinedStream) -> None:
        self.streams.append(stream)
        self.current = stream
        if self.on_ready is not None:
            self.on_ready(stream)

    def on_stream_end(self) -> None:
        self.ended += 1
        self.current = None
        if self.on_end is not None:
            self.on_end()


@register_transport('recording')
class RecordingTransport(StreamTransport):
    """
    Transport that records the exposed stream to a video file.

    Frames are pulled with write_frames(); the preview is rendered the same
    way the host sees it (screen share first, camera otherwise). A stream
    replaced mid-session keeps writing into the same file.

    Args:
        path: Output file (container guessed from the extension)
        width: Encoded frame width (even, for yuv420p)
        height: Encoded frame height (even, for yuv420p)
        fps: Frame rate written into the container
        codec: Video codec ('mpeg4', 'h264', ...)
        pix_fmt: Pixel format for encoding

    Example:
        recorder = RecordingTransport('session.mp4')
        host = HostView(StreamType.GENERAL, backend, recorder)
        await host.start_stream()
        recorder.write_frames(30)
        host.stop_stream()         # file finalized
    """

    def __init__(
        self,
        path: str,
        width: int = 640,
        height: int = 360,
        fps: int = 30,
        codec: str = 'mpeg4',
        pix_fmt: str = 'yuv420p',
    ):
        self.path = path
        self.width = width
        self.height = height
        self.fps = fps
        self.codec = codec
        self.pix_fmt = pix_fmt

        self.stream: Optional[CombinedStream] = None
        self.inset: Optional[MediaTrack] = None
        self._compositor = StreamCompositor()
        self._container = None
        self._video = None
        self._frame_count = 0

    @property
    def frames_written(self) -> int:
        return self._frame_count

    @property
    def recording(self) -> bool:
        return self._container is not None

    def on_stream_ready(self, stream: CombinedStream) -> None:
        self.stream = stream
        if self._container is None:
            self._container = av.open(self.path, 'w')
            self._video = self._container.add_stream(self.codec, rate=self.fps)
            self._video.width = self.width
            self._video.height = self.height
            self._video.pix_fmt = self.pix_fmt
            self._frame_count = 0
            logger.info("Recording %s to %s", stream.id, self.path)

    def write_frames(self, count: int = 1) -> int:
        """
        Encode `count` preview frames of the current stream.

        Returns:
            Number of frames written (muted video yields black frames)
        """
        if self._container is None or self.stream is None:
            raise RuntimeError("Recording not started, no stream has been exposed")

        for _ in range(count):
            frame = self._compositor.render(self.stream, inset=self.inset)
            if frame is None:
                frame = np.zeros((self.height, self.width, 3), dtype=np.uint8)
            elif frame.shape[:2] != (self.height, self.width):
                frame = cv2.resize(frame, (self.width, self.height), interpolation=cv2.INTER_AREA)

            av_frame = av.VideoFrame.from_ndarray(np.ascontiguousarray(frame), format='rgb24')
            av_frame.pts = self._frame_count
            for packet in self._video.encode(av_frame):
                self._container.mux(packet)
            self._frame_count += 1
        return count

    def on_stream_end(self) -> None:
        """Flush the encoder and close the file."""
        if self._container is None:
            return
        for packet in self._video.encode():
            self._container.mux(packet)
        self._container.close()
        self._container = None
        self._video = None
        self.stream = None
        logger.info("Finished recording %s (%d frames)", self.path, self._frame_count)

    def get_stats(self) -> dict:
        return {
            'path': self.path,
            'codec': self.codec,
            'frames_written': self._frame_count,
            'width': self.width,
            'height': self.height,
            'fps': self.fps,
        }
