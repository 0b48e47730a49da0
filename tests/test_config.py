"""
Tests for settings, environment loading and the event bus.
"""

import asyncio
import dataclasses

import pytest

from livesession import (
    CaptureSettings,
    CodeChanged,
    EventBus,
    HandRaised,
    IntroLimits,
    Settings,
)
from livesession.config import _coerce_bool, _coerce_float, _coerce_int


class TestCoercion:

    @pytest.mark.parametrize('value,expected', [
        ('1', True), ('true', True), (' Yes ', True), ('on', True),
        ('0', False), ('false', False), ('off', False), ('', False),
    ])
    def test_bool(self, value, expected):
        assert _coerce_bool(value) is expected

    def test_bool_unknown_uses_default(self):
        assert _coerce_bool('maybe', default=True) is True
        assert _coerce_bool(None, default=False) is False

    def test_numbers(self):
        assert _coerce_int('42') == 42
        assert _coerce_int('7.9') == 7
        assert _coerce_int('abc', default=3) == 3
        assert _coerce_float('0.25') == 0.25
        assert _coerce_float(None, default=1.5) == 1.5


class TestSettings:

    def test_defaults(self):
        settings = Settings()
        assert settings.backend == 'synthetic'
        assert settings.capture.video_width == 1920
        assert settings.capture.video_height == 1080
        assert settings.intro.max_duration_seconds == 1200
        assert settings.intro.max_size_bytes == 500 * 1024 * 1024
        assert settings.session.default_intro_url == '/videos/default-intro.mp4'

    def test_frozen(self):
        with pytest.raises(dataclasses.FrozenInstanceError):
            Settings().backend = 'other'

    def test_from_env(self):
        settings = Settings.from_env({
            'LIVESESSION_VIDEO_WIDTH': '1280',
            'LIVESESSION_VIDEO_HEIGHT': '720',
            'LIVESESSION_FRAME_RATE': '24',
            'LIVESESSION_ECHO_CANCELLATION': 'off',
            'LIVESESSION_INTRO_MAX_SIZE_MB': '100',
            'LIVESESSION_INTRO_MAX_DURATION': '60',
            'LIVESESSION_COMMAND_DELAY': '0.5',
            'LIVESESSION_UPLOAD_DIR': '/tmp/intros',
            'LIVESESSION_LOG_LEVEL': 'debug',
        })
        assert settings.capture.video_width == 1280
        assert settings.capture.video_height == 720
        assert settings.capture.frame_rate == 24.0
        assert settings.capture.echo_cancellation is False
        assert settings.intro.max_size_bytes == 100 * 1024 * 1024
        assert settings.intro.max_duration_seconds == 60.0
        assert settings.session.command_delay == 0.5
        assert settings.session.upload_dir == '/tmp/intros'
        assert settings.log_level == 'DEBUG'

    def test_from_env_bad_values_fall_back(self):
        settings = Settings.from_env({'LIVESESSION_VIDEO_WIDTH': 'wide'})
        assert settings.capture.video_width == 1920
        assert settings.intro == IntroLimits()

    def test_constraints(self):
        capture = CaptureSettings(echo_cancellation=False)

        camera = capture.camera_constraints()
        assert camera.audio is None
        assert (camera.video.width, camera.video.height, camera.video.frame_rate) == (1920, 1080, 30.0)

        mic = capture.microphone_constraints()
        assert mic.video is None
        assert not mic.audio.echo_cancellation
        assert mic.audio.noise_suppression and mic.audio.auto_gain_control

        screen = capture.screen_constraints()
        assert screen.video is not None and screen.audio is not None

        inset = capture.inset_constraints()
        assert (inset.video.width, inset.video.height) == (320, 240)
        assert inset.video.facing_mode == 'user'
        assert inset.audio is None


class TestEventBus:

    @pytest.mark.asyncio
    async def test_subscription(self):
        bus = EventBus()
        subscription = bus.subscribe(CodeChanged)

        bus.publish(CodeChanged('main.js', 'a'))
        bus.publish(HandRaised('ana', True))

        event = await asyncio.wait_for(subscription.__anext__(), timeout=1)
        assert event == CodeChanged('main.js', 'a')
        assert subscription.get_nowait() is None

        subscription.unsubscribe()
        bus.publish(CodeChanged('main.js', 'b'))
        assert subscription.get_nowait() is None

    def test_full_queue_drops(self):
        bus = EventBus(buffer_size=2)
        subscription = bus.subscribe(CodeChanged)

        for i in range(5):
            bus.publish(CodeChanged('f', str(i)))

        assert subscription.get_nowait().content == '0'
        assert subscription.get_nowait().content == '1'
        assert subscription.get_nowait() is None

    def test_failing_listener_does_not_block_others(self):
        bus = EventBus()
        received = []

        def broken(event):
            raise RuntimeError("boom")

        bus.add_listener(HandRaised, broken)
        bus.add_listener(HandRaised, received.append)
        bus.publish(HandRaised('ana', True))

        assert received == [HandRaised('ana', True)]

        bus.remove_listener(HandRaised, received.append)
        bus.publish(HandRaised('ana', False))
        assert len(received) == 1
