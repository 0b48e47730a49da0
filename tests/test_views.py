"""
Tests for the host and participant views.

This test verifies that:
1. Camera + mic capture gives a stream with audio and video
2. Screen share with denied system audio gives a degraded stream and a warning
3. Viewers only receive the stream once the intro has finished
4. stop_stream() releases every device, even while a start is pending
5. A second start while one is pending is rejected
6. Settings changes mute in place and set audio gain
7. Participants act on the session only with edit permission
"""

import asyncio

import numpy as np
import pytest

from livesession import (
    CallbackTransport,
    CaptureInProgressError,
    CaptureSettings,
    CollaborationSession,
    DegradedAudio,
    DeviceNotFoundError,
    HostView,
    IntroPhase,
    InvalidStateError,
    Layout,
    MediaKind,
    ParticipantView,
    PermissionDenied,
    SessionClosedError,
    Settings,
    SourceLost,
    StreamEnded,
    StreamReady,
    StreamType,
    SyntheticMediaBackend,
    layout_for,
)

SMALL = Settings(capture=CaptureSettings(video_width=320, video_height=180))


def make_host(stream_type=StreamType.CODE_REVIEW, backend=None, transport=None, **kwargs):
    backend = backend or SyntheticMediaBackend()
    transport = transport or CallbackTransport()
    return HostView(stream_type, backend, transport, settings=SMALL, **kwargs)


def record(bus, *event_types):
    events = []
    for event_type in event_types:
        bus.add_listener(event_type, events.append)
    return events


class TestLayout:

    def test_coding_stream_types(self):
        for stream_type in ('code_review', 'debugging', 'project_building', 'interview_prep'):
            assert layout_for(stream_type) == Layout.CODING
        for stream_type in ('general', 'gaming', 'music', 'talk'):
            assert layout_for(stream_type) == Layout.PLAIN

    def test_session_only_for_coding_layout(self):
        assert isinstance(make_host(StreamType.DEBUGGING).session, CollaborationSession)
        plain = make_host(StreamType.GAMING)
        assert plain.session is None
        assert plain.handle is None

    def test_plugins_by_name(self):
        host = HostView(StreamType.TALK, 'synthetic', 'callback')
        assert isinstance(host.backend, SyntheticMediaBackend)
        assert isinstance(host.transport, CallbackTransport)

    def test_unknown_plugin(self):
        with pytest.raises(LookupError):
            HostView(StreamType.TALK, 'webcam-9000', 'callback')


class TestHostCapture:

    @pytest.mark.asyncio
    async def test_camera_and_mic(self):
        backend = SyntheticMediaBackend()
        transport = CallbackTransport()
        host = make_host(backend=backend, transport=transport)

        stream = await host.start_capture()

        assert stream.has_video and stream.has_audio
        assert backend.open_handles == 2
        assert transport.streams == []
        assert host.render_preview().shape == (180, 320, 3)

    @pytest.mark.asyncio
    async def test_screen_share_without_system_audio(self):
        """Screen replaces camera; missing screen audio is flagged."""
        backend = SyntheticMediaBackend(deny_screen_audio=True)
        host = make_host(backend=backend)
        degraded = record(host.bus, DegradedAudio)

        camera_stream = await host.start_capture()
        screen_stream = await host.start_screen_share()

        assert screen_stream is not camera_stream
        assert camera_stream.released
        assert screen_stream.has_video
        assert not screen_stream.has_audio
        assert degraded == [DegradedAudio(screen_stream.id)]

        assert host.camera is None and host.microphone is None
        assert host.inset is not None
        assert host.inset.tracks[0].settings['width'] == 320
        assert host.inset.tracks[0].settings['height'] == 240
        assert host.inset.audio_tracks == []
        # screen video + inset camera
        assert backend.open_handles == 2
        assert host.render_preview().shape == (180, 320, 3)

    @pytest.mark.asyncio
    async def test_stop_screen_share_returns_to_camera(self):
        backend = SyntheticMediaBackend()
        transport = CallbackTransport()
        host = make_host(backend=backend, transport=transport)
        host.intro.disable_intro()
        await host.start_stream()
        await host.start_screen_share()

        stream = await host.stop_screen_share()

        assert stream.has_video and stream.has_audio
        assert not host.screen_sharing
        assert host.inset is None
        assert backend.open_handles == 2
        assert transport.current is stream
        assert len(transport.streams) == 3

    @pytest.mark.asyncio
    async def test_permission_denied_leaves_nothing_open(self):
        backend = SyntheticMediaBackend(deny=[MediaKind.MICROPHONE])
        host = make_host(backend=backend)

        with pytest.raises(PermissionDenied):
            await host.start_stream()

        assert backend.open_handles == 0
        assert host.phase == IntroPhase.SETUP
        assert not host.streaming

        backend.deny.clear()
        assert await host.start_stream() == IntroPhase.INTRO

    @pytest.mark.asyncio
    async def test_partial_failure_releases_camera(self):
        backend = SyntheticMediaBackend(fail_on_attempt=2)
        host = make_host(backend=backend)

        with pytest.raises(DeviceNotFoundError):
            await host.start_capture()

        assert backend.open_handles == 0
        assert host.stream is None

    @pytest.mark.asyncio
    async def test_second_start_while_pending(self):
        backend = SyntheticMediaBackend(latency=0.02)
        host = make_host(backend=backend)

        pending = asyncio.create_task(host.start_capture())
        await asyncio.sleep(0)

        with pytest.raises(CaptureInProgressError):
            await host.start_capture()

        stream = await pending
        assert stream.has_video
        assert backend.open_handles == 2

    @pytest.mark.asyncio
    async def test_stop_while_start_pending(self):
        """Devices acquired after stop_stream() are released, not leaked."""
        backend = SyntheticMediaBackend(latency=0.02)
        host = make_host(backend=backend)

        pending = asyncio.create_task(host.start_stream())
        await asyncio.sleep(0.01)
        host.stop_stream()

        with pytest.raises(InvalidStateError):
            await pending

        assert backend.open_handles == 0
        assert host.stream is None
        assert host.phase == IntroPhase.SETUP

        assert await host.start_stream() == IntroPhase.INTRO
        assert backend.open_handles == 2


class TestHostStreaming:

    @pytest.mark.asyncio
    async def test_intro_gates_exposure(self):
        transport = CallbackTransport()
        host = make_host(transport=transport)
        host.session.on_participant_joined('ana', 'Ana')
        viewer = ParticipantView('ana', host.session)
        host.add_viewer(viewer)
        ready = record(host.bus, StreamReady)

        assert await host.start_stream() == IntroPhase.INTRO
        assert transport.streams == []
        assert viewer.stream is None
        assert ready == []

        assert host.on_intro_playback_end()
        assert host.phase == IntroPhase.LIVE
        assert transport.current is host.stream
        assert viewer.stream is host.stream
        assert ready == [StreamReady(host.stream.id, True, True)]

    @pytest.mark.asyncio
    async def test_no_intro_goes_live(self):
        transport = CallbackTransport()
        host = make_host(transport=transport)
        host.intro.disable_intro()

        assert await host.start_stream() == IntroPhase.LIVE
        assert transport.streams == [host.stream]
        assert not host.on_intro_playback_end()

    @pytest.mark.asyncio
    async def test_late_viewer_gets_live_stream(self):
        host = make_host()
        host.intro.disable_intro()
        await host.start_stream()
        host.session.on_participant_joined('bob', 'Bob')

        viewer = ParticipantView('bob', host.session)
        host.add_viewer(viewer)

        assert viewer.stream is host.stream

    @pytest.mark.asyncio
    async def test_stop_stream_releases_everything(self):
        backend = SyntheticMediaBackend()
        transport = CallbackTransport()
        host = make_host(backend=backend, transport=transport)
        ended = record(host.bus, StreamEnded)
        await host.start_stream()
        host.on_intro_playback_end()
        await host.start_screen_share()
        stream = host.stream
        session = host.session

        host.stop_stream()
        host.stop_stream()

        assert backend.open_handles == 0
        assert stream.stopped
        assert host.stream is None
        assert host.phase == IntroPhase.SETUP
        assert not host.intro.intro_ended
        assert transport.ended == 1
        assert transport.current is None
        assert ended == [StreamEnded(stream.id)]
        assert session.closed

    @pytest.mark.asyncio
    async def test_restart_gets_fresh_session(self):
        host = make_host()
        await host.start_stream()
        first = host.session
        host.stop_stream()

        await host.start_stream()

        assert host.session is not first
        assert not host.session.closed
        with pytest.raises(SessionClosedError):
            first.write_file('main.js', 'x', actor_id='host')

    @pytest.mark.asyncio
    async def test_start_stream_twice(self):
        host = make_host()
        await host.start_stream()
        with pytest.raises(InvalidStateError):
            await host.start_stream()

    @pytest.mark.asyncio
    async def test_lost_microphone_recomposes(self):
        """An unplugged mic leaves a video-only stream, flagged and re-exposed."""
        backend = SyntheticMediaBackend()
        transport = CallbackTransport()
        host = make_host(backend=backend, transport=transport)
        host.intro.disable_intro()
        events = record(host.bus, SourceLost, DegradedAudio)
        await host.start_stream()
        first = host.stream

        backend.unplug('mic-0')

        assert host.microphone is None
        assert host.stream is not first
        assert host.stream.has_video and not host.stream.has_audio
        assert transport.current is host.stream
        assert events == [SourceLost('microphone'), DegradedAudio(host.stream.id)]

    @pytest.mark.asyncio
    async def test_lost_microphone_keeps_muted_camera(self):
        """A camera muted in place is still held, so it stays in the new stream."""
        backend = SyntheticMediaBackend()
        transport = CallbackTransport()
        host = make_host(backend=backend, transport=transport)
        host.intro.disable_intro()
        await host.start_stream()
        await host.set_camera(False)
        first = host.stream

        backend.unplug('mic-0')

        camera_track = host.camera.video_tracks[0]
        assert host.stream is not first
        assert host.stream.tracks == (camera_track,)
        assert camera_track.is_live and not camera_track.enabled
        assert transport.current is host.stream

        await host.set_camera(True)
        assert host.stream.video_tracks[0].enabled

    @pytest.mark.asyncio
    async def test_stop_detaches_viewers(self):
        """Viewers bound to the closed session do not follow a restart."""
        host = make_host()
        host.intro.disable_intro()
        host.session.on_participant_joined('ana', 'Ana')
        viewer = ParticipantView('ana', host.session)
        host.add_viewer(viewer)
        await host.start_stream()
        assert viewer.stream is host.stream

        host.stop_stream()
        assert host.viewers == []
        assert viewer.stream is None

        await host.start_stream()
        assert viewer.stream is None
        assert viewer.session.closed


class TestHostSettings:

    @pytest.mark.asyncio
    async def test_toggles_mute_in_place(self):
        backend = SyntheticMediaBackend()
        host = make_host(backend=backend)
        stream = await host.start_capture()

        await host.set_camera(False)
        host.set_mic(False)

        assert host.stream is stream
        assert all(not t.enabled and t.is_live for t in stream.tracks)
        assert backend.open_handles == 2

        await host.set_camera(True)
        host.set_mic(True)
        assert all(t.enabled for t in stream.tracks)
        assert backend.acquisitions == 2

    @pytest.mark.asyncio
    async def test_disabled_before_capture(self):
        host = make_host()
        host.set_mic(False)

        stream = await host.start_capture()

        assert stream.has_audio
        assert not stream.audio_tracks[0].enabled
        assert stream.video_tracks[0].enabled

    @pytest.mark.asyncio
    async def test_camera_toggle_during_screen_share(self):
        backend = SyntheticMediaBackend()
        host = make_host(backend=backend)
        await host.start_capture()
        await host.set_screen(True)
        assert host.inset is not None

        await host.set_camera(False)
        assert host.inset is None
        assert backend.open_handles == 2  # screen video + screen audio

        await host.set_camera(True)
        assert host.inset is not None
        assert backend.open_handles == 3

    @pytest.mark.asyncio
    async def test_camera_toggle_cancelled_by_stop(self):
        """An inset acquired after stop_stream() is released, not kept."""
        backend = SyntheticMediaBackend(latency=0.02)
        host = make_host(backend=backend)
        host.intro.disable_intro()
        await host.start_stream()
        await host.start_screen_share()
        await host.set_camera(False)

        pending = asyncio.create_task(host.set_camera(True))
        await asyncio.sleep(0.01)
        host.stop_stream()

        with pytest.raises(InvalidStateError):
            await pending
        assert host.inset is None
        assert backend.open_handles == 0

    @pytest.mark.asyncio
    async def test_mic_mute_during_screen_share(self):
        """Muting during screen share silences system audio only."""
        host = make_host()
        await host.start_capture()
        await host.start_screen_share()

        host.set_mic(False)
        assert host.screen.enabled
        assert [t.enabled for t in host.stream.audio_tracks] == [False]
        assert [t.enabled for t in host.stream.video_tracks] == [True]

        host.set_mic(True)
        assert all(t.enabled for t in host.stream.tracks)

    @pytest.mark.asyncio
    async def test_muted_mic_carries_over_to_screen_share(self):
        host = make_host()
        await host.start_capture()
        host.set_mic(False)

        stream = await host.start_screen_share()

        assert [t.enabled for t in stream.audio_tracks] == [False]

    @pytest.mark.asyncio
    async def test_volume_sets_gain(self):
        host = make_host()
        stream = await host.start_capture()
        audio = stream.audio_tracks[0]

        host.set_volume(50)

        assert audio.gain == 0.5
        assert np.max(np.abs(audio.read_frame())) <= 0.1 + 1e-6

        with pytest.raises(ValueError):
            host.set_volume(101)
        assert host.volume == 50

    @pytest.mark.asyncio
    async def test_volume_carries_over_to_new_stream(self):
        host = make_host()
        host.set_volume(20)
        await host.start_capture()
        stream = await host.start_screen_share()

        assert [t.gain for t in stream.audio_tracks] == [0.2]


class TestParticipantView:

    @pytest.mark.asyncio
    async def test_edit_requires_permission(self):
        host = make_host()
        host.session.on_participant_joined('ana', 'Ana')
        viewer = ParticipantView('ana', host.session)

        assert not viewer.can_edit
        with pytest.raises(PermissionDenied):
            viewer.write_file('main.js', 'x')
        with pytest.raises(PermissionDenied):
            await viewer.run_command('ls')

        host.handle.set_permission('ana', True)

        viewer.write_file('main.js', 'console.log(1);')
        assert host.handle.read_file('main.js') == 'console.log(1);'
        assert await viewer.run_command('ls') == ['src/  package.json']

    def test_raise_hand_toggles(self):
        host = make_host()
        host.session.on_participant_joined('ana', 'Ana')
        viewer = ParticipantView('ana', host.session)

        assert viewer.raise_hand() is True
        assert viewer.hand_raised
        assert viewer.raise_hand() is False
        assert not viewer.hand_raised

    def test_host_handle(self):
        host = make_host()
        handle = host.handle

        folder = handle.create_node('docs', 'folder')
        assert handle.get_node(folder.id).is_folder
        assert handle.delete_node(folder.id) == [folder.id]
        with pytest.raises(InvalidStateError):
            handle.raise_hand()
