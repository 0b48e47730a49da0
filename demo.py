#!/usr/bin/env python3
"""
Quick demo of livesession capabilities.

Runs a coding session on the synthetic backend: capture, intro, a viewer
with edit rights, terminal commands, screen share, and a short recording.
"""

import asyncio

from livesession import (
    CodeChanged,
    HostView,
    ParticipantView,
    RecordingTransport,
    Settings,
    StreamType,
    SyntheticMediaBackend,
    configure_logging,
)


async def demo_coding_session():
    """Demo 1: Host goes live, a viewer joins and edits code."""
    print("Demo 1: Coding Session\n")

    settings = Settings.from_env()
    recorder = RecordingTransport('livesession-demo.mp4', width=640, height=360)
    host = HostView(StreamType.CODE_REVIEW, SyntheticMediaBackend(), recorder, settings=settings)
    host.bus.add_listener(CodeChanged, lambda e: print(f"  code changed: {e.file_id} by {e.actor_id}"))

    phase = await host.start_stream()
    print(f"Phase after start: {phase.value}")
    host.on_intro_playback_end()
    print(f"Phase after intro: {host.phase.value}")

    host.session.on_participant_joined('ana', 'Ana')
    viewer = ParticipantView('ana', host.session)
    host.add_viewer(viewer)

    host.handle.set_permission('ana', True)
    viewer.write_file('main.js', "console.log('hello from ana');\n")

    for command in ('ls', 'npm install express', 'npm run dev'):
        for line in await viewer.run_command(command):
            print(f"  {line}")

    recorder.write_frames(30)

    print("\nDemo 2: Screen Share\n")
    await host.set_screen(True)
    recorder.write_frames(30)
    await host.set_screen(False)

    host.stop_stream()
    print(f"\nRecorded {recorder.frames_written} frames to {recorder.path}")


async def main():
    """Run all demos."""
    configure_logging()
    print("=" * 60)
    print("livesession Demo")
    print("=" * 60)
    print()

    await demo_coding_session()

    print("\nDemo complete!")


if __name__ == '__main__':
    asyncio.run(main())
