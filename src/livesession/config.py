"""Configuration dataclasses and environment loading for live sessions."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from .media import AudioConstraints, Constraints, VideoConstraints

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off", ""}

MEGABYTE = 1024 * 1024


def _coerce_bool(value: object, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        val = value.strip().lower()
        if val in _TRUTHY:
            return True
        if val in _FALSY:
            return False
    return default


def _coerce_int(value: object, default: int = 0) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(float(value.strip()))
        except ValueError:
            logger.warning("Ignoring non-integer setting value %r", value)
    return default


def _coerce_float(value: object, default: float = 0.0) -> float:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            logger.warning("Ignoring non-numeric setting value %r", value)
    return default


@dataclass(frozen=True)
class CaptureSettings:
    """Capture constraints used by the host view."""

    video_width: int = 1920
    video_height: int = 1080
    frame_rate: float = 30.0
    inset_width: int = 320
    inset_height: int = 240
    echo_cancellation: bool = True
    noise_suppression: bool = True
    auto_gain_control: bool = True

    def _audio(self) -> AudioConstraints:
        return AudioConstraints(
            echo_cancellation=self.echo_cancellation,
            noise_suppression=self.noise_suppression,
            auto_gain_control=self.auto_gain_control,
        )

    def camera_constraints(self) -> Constraints:
        return Constraints(
            video=VideoConstraints(self.video_width, self.video_height, self.frame_rate),
            audio=None,
        )

    def microphone_constraints(self) -> Constraints:
        return Constraints(video=None, audio=self._audio())

    def screen_constraints(self) -> Constraints:
        return Constraints(
            video=VideoConstraints(self.video_width, self.video_height, self.frame_rate),
            audio=self._audio(),
        )

    def inset_constraints(self) -> Constraints:
        """Small host camera shown over a screen share; no audio."""
        return Constraints(
            video=VideoConstraints(self.inset_width, self.inset_height, facing_mode='user'),
            audio=None,
        )


@dataclass(frozen=True)
class IntroLimits:
    """Acceptance limits for a custom intro video."""

    max_duration_seconds: float = 20 * 60
    max_size_bytes: int = 500 * MEGABYTE
    allowed_mime_types: tuple[str, ...] = ("video/mp4",)
    # PyAV reports the MP4 demuxer under this combined name
    allowed_containers: tuple[str, ...] = ("mov,mp4,m4a,3gp,3g2,mj2", "mp4")
    allowed_video_codecs: tuple[str, ...] = ("h264", "hevc", "mpeg4", "av1", "vp9")


@dataclass(frozen=True)
class SessionSettings:
    """Collaboration session and intro upload settings."""

    project_name: str = "streaming-project"
    command_delay: float = 0.0
    upload_dir: str = "uploads/intros"
    upload_chunk_size: int = MEGABYTE
    default_intro_url: str = "/videos/default-intro.mp4"


@dataclass(frozen=True)
class Settings:
    """Top-level settings."""

    backend: str = "synthetic"
    log_level: str = "INFO"
    capture: CaptureSettings = field(default_factory=CaptureSettings)
    intro: IntroLimits = field(default_factory=IntroLimits)
    session: SessionSettings = field(default_factory=SessionSettings)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from LIVESESSION_* environment variables.

        Unset or malformed values fall back to the defaults.
        """
        env = os.environ if env is None else env
        base_capture = CaptureSettings()
        base_intro = IntroLimits()
        base_session = SessionSettings()

        capture = CaptureSettings(
            video_width=_coerce_int(env.get("LIVESESSION_VIDEO_WIDTH"), base_capture.video_width),
            video_height=_coerce_int(env.get("LIVESESSION_VIDEO_HEIGHT"), base_capture.video_height),
            frame_rate=_coerce_float(env.get("LIVESESSION_FRAME_RATE"), base_capture.frame_rate),
            echo_cancellation=_coerce_bool(
                env.get("LIVESESSION_ECHO_CANCELLATION"), base_capture.echo_cancellation
            ),
        )
        max_size_mb = _coerce_int(
            env.get("LIVESESSION_INTRO_MAX_SIZE_MB"), base_intro.max_size_bytes // MEGABYTE
        )
        intro = IntroLimits(
            max_duration_seconds=_coerce_float(
                env.get("LIVESESSION_INTRO_MAX_DURATION"), base_intro.max_duration_seconds
            ),
            max_size_bytes=max_size_mb * MEGABYTE,
        )
        session = SessionSettings(
            command_delay=_coerce_float(
                env.get("LIVESESSION_COMMAND_DELAY"), base_session.command_delay
            ),
            upload_dir=env.get("LIVESESSION_UPLOAD_DIR") or base_session.upload_dir,
        )
        return cls(
            backend=env.get("LIVESESSION_BACKEND") or "synthetic",
            log_level=(env.get("LIVESESSION_LOG_LEVEL") or "INFO").upper(),
            capture=capture,
            intro=intro,
            session=session,
        )


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging for demos and scripts (never called on import)."""
    level_name = (level or os.environ.get("LIVESESSION_LOG_LEVEL") or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="[%(levelname)s] %(name)s: %(message)s",
    )
