"""
Tests for the collaboration session.

This test verifies that:
1. The session starts with the default project and terminal
2. Edit permission is enforced by the session, not by callers
3. Writes are visible through every read path before returning
4. Deleting a folder removes its subtree and fixes the editor tabs
5. Terminal commands are deterministic and output follows its echo
6. Inbound channel events update the roster and are republished
"""

import asyncio
import json

import pytest

from livesession import (
    CodeChanged,
    CollaborationSession,
    EventBus,
    FileSaved,
    HandRaised,
    InvalidNodeError,
    InvalidStateError,
    NodeKind,
    NodeNotFoundError,
    ParticipantJoined,
    ParticipantLeft,
    ParticipantNotFoundError,
    PermissionChanged,
    PermissionDenied,
    SessionClosedError,
    SessionSettings,
    Settings,
    TerminalCommandIssued,
)

WELCOME = [
    '$ Welcome to Code-OSS Integrated Terminal',
    '$ Type commands here to execute in real-time',
]


@pytest.fixture
def session():
    session = CollaborationSession('host')
    session.on_participant_joined('ana', 'Ana')
    return session


class TestProjectTree:

    def test_default_project(self, session):
        paths = [path for path, _ in session.walk()]
        assert paths == [
            'streaming-project',
            'streaming-project/src',
            'streaming-project/src/main.js',
            'streaming-project/src/index.html',
            'streaming-project/package.json',
        ]
        assert session.active_file.id == 'main.js'
        assert [tab.id for tab in session.open_tabs] == ['main.js']
        assert 'Hello, streaming world!' in session.read_file('main.js')
        assert session.get_node('main.js').language == 'javascript'
        assert json.loads(session.read_file('package.json'))['name'] == 'streaming-project'

    def test_write_denied_without_permission(self, session):
        """A participant without canEdit cannot change content."""
        before = session.read_file('main.js')

        with pytest.raises(PermissionDenied) as exc_info:
            session.write_file('main.js', 'hacked();', actor_id='ana')

        assert exc_info.value.actor_id == 'ana'
        assert session.read_file('main.js') == before
        assert session.notifications == []

    def test_write_visible_everywhere(self, session):
        session.set_permission('ana', True, actor_id='host')
        session.open_file('index.html')
        session.open_file('main.js')

        session.write_file('main.js', 'main();', actor_id='ana')

        assert session.read_file('main.js') == 'main();'
        assert session.active_file.content == 'main();'
        tab = next(t for t in session.open_tabs if t.id == 'main.js')
        assert tab.content == 'main();'
        assert session.notifications == ['File main.js saved']

    def test_write_publishes_and_calls_hook(self):
        bus = EventBus()
        changed = []
        saved = []
        hook_calls = []
        bus.add_listener(CodeChanged, changed.append)
        bus.add_listener(FileSaved, saved.append)
        session = CollaborationSession(
            'host', bus=bus, on_code_change=lambda f, c: hook_calls.append((f, c))
        )

        session.write_file('index.html', '<p>hi</p>', actor_id='host')

        assert changed == [CodeChanged('index.html', '<p>hi</p>', 'host')]
        assert saved == [FileSaved('index.html', 'index.html', 'host')]
        assert hook_calls == [('index.html', '<p>hi</p>')]

    def test_write_folder_or_missing(self, session):
        with pytest.raises(InvalidNodeError):
            session.write_file('src', 'x', actor_id='host')
        with pytest.raises(NodeNotFoundError):
            session.write_file('nope', 'x', actor_id='host')

    def test_create_node(self, session):
        folder = session.create_node('lib', NodeKind.FOLDER)
        file = session.create_node('util.ts', NodeKind.FILE, parent_id=folder.id)

        assert file.parent_id == folder.id
        assert file.language == 'typescript'
        assert session.get_node(folder.id).children == [file]
        assert session.read_file(file.id) == ''

    def test_create_node_rejections(self, session):
        with pytest.raises(NodeNotFoundError):
            session.create_node('x.js', NodeKind.FILE, parent_id='missing')
        with pytest.raises(InvalidNodeError):
            session.create_node('x.js', NodeKind.FILE, parent_id='main.js')
        with pytest.raises(InvalidNodeError):
            session.create_node('src', NodeKind.FOLDER)
        with pytest.raises(PermissionDenied):
            session.create_node('x.js', NodeKind.FILE, actor_id='ana')

    def test_delete_folder_removes_subtree(self, session):
        """Descendant ids vanish and cannot be used as parents afterwards."""
        session.open_file('index.html')
        session.open_file('package.json')
        session.open_file('main.js')

        removed = session.delete_node('src')

        assert set(removed) == {'src', 'main.js', 'index.html'}
        for node_id in removed:
            with pytest.raises(NodeNotFoundError):
                session.get_node(node_id)
        with pytest.raises(NodeNotFoundError):
            session.create_node('again.js', NodeKind.FILE, parent_id='src')

        assert [tab.id for tab in session.open_tabs] == ['package.json']
        assert session.active_file.id == 'package.json'

    def test_delete_last_tab_clears_active_file(self, session):
        session.delete_node('main.js')
        assert session.open_tabs == []
        assert session.active_file is None

    def test_delete_root(self, session):
        with pytest.raises(InvalidNodeError):
            session.delete_node('project')

    def test_close_tab_reassigns_active(self, session):
        session.open_file('index.html')
        session.open_file('package.json')

        session.close_tab('package.json')
        assert session.active_file.id == 'index.html'

        session.close_tab('main.js')
        assert session.active_file.id == 'index.html'
        session.close_tab('index.html')
        assert session.active_file is None


class TestPermissions:

    def test_only_host_sets_permission(self, session):
        session.on_participant_joined('bob', 'Bob')
        session.set_permission('bob', True, actor_id='host')

        with pytest.raises(PermissionDenied):
            session.set_permission('ana', True, actor_id='bob')
        assert not session.can_edit('ana')

    def test_unknown_participant(self, session):
        with pytest.raises(ParticipantNotFoundError):
            session.set_permission('ghost', True, actor_id='host')
        assert not session.can_edit('ghost')

    def test_host_permission_is_fixed(self, session):
        with pytest.raises(InvalidStateError):
            session.set_permission('host', False, actor_id='host')

    def test_participant_that_left_cannot_edit(self, session):
        session.set_permission('ana', True, actor_id='host')
        session.on_participant_left('ana')

        with pytest.raises(PermissionDenied):
            session.write_file('main.js', 'x', actor_id='ana')

    def test_inbound_events_republished(self):
        bus = EventBus()
        events = []
        for event_type in (ParticipantJoined, ParticipantLeft, PermissionChanged, HandRaised):
            bus.add_listener(event_type, events.append)
        session = CollaborationSession('host', bus=bus)

        session.on_participant_joined('ana', 'Ana')
        session.on_permission_changed('ana', True)
        session.raise_hand('ana')
        session.on_participant_left('ana')

        assert events == [
            ParticipantJoined('ana', 'Ana'),
            PermissionChanged('ana', True),
            HandRaised('ana', True),
            ParticipantLeft('ana'),
        ]
        assert not session.participants['ana'].hand_raised

    def test_remote_edit_is_not_echoed(self):
        hook_calls = []
        session = CollaborationSession('host', on_code_change=lambda f, c: hook_calls.append(f))
        session.on_participant_joined('ana', 'Ana', can_edit=True)

        session.on_remote_edit('main.js', 'remote();', actor_id='ana')

        assert session.read_file('main.js') == 'remote();'
        assert hook_calls == []


class TestTerminal:

    @pytest.mark.asyncio
    async def test_rejected_command_leaves_transcript(self, session):
        with pytest.raises(PermissionDenied):
            await session.run_command('ls', actor_id='ana')
        assert list(session.terminal('main').lines) == WELCOME

    @pytest.mark.asyncio
    async def test_granted_ls_appends_echo_then_listing(self, session):
        with pytest.raises(PermissionDenied):
            await session.run_command('ls', actor_id='ana')
        session.set_permission('ana', True, actor_id='host')

        output = await session.run_command('ls', actor_id='ana')

        assert output == ['src/  package.json']
        assert list(session.terminal().lines) == WELCOME + ['$ ls', 'src/  package.json']

    @pytest.mark.asyncio
    async def test_canned_commands(self, session):
        assert await session.run_command('npm install', 'host') == [
            'Installing dependencies...',
            '✓ Dependencies installed successfully',
        ]
        assert await session.run_command('npm start', 'host') == [
            'Starting application...',
            '> streaming-project@1.0.0 start',
            'Hello, streaming world!',
        ]
        assert await session.run_command('pwd', 'host') == ['/streaming-project']
        assert await session.run_command('rm -rf /', 'host') == ["Command 'rm -rf /' not found"]
        assert await session.run_command('   ', 'host') == []

    @pytest.mark.asyncio
    async def test_same_input_same_output(self):
        transcripts = []
        for _ in range(2):
            session = CollaborationSession('host')
            for command in ('ls', 'mkdir docs', 'touch notes.md', 'ls', 'npm run dev', 'foo'):
                await session.run_command(command, 'host')
            transcripts.append(session.terminal().lines)
        assert transcripts[0] == transcripts[1]
        assert transcripts[0][-1] == "Command 'foo' not found"

    @pytest.mark.asyncio
    async def test_mkdir_and_touch_create_nodes(self, session):
        assert await session.run_command('mkdir docs', 'host') == ['Directory docs created']
        assert await session.run_command('touch notes.md', 'host') == ['File notes.md created']
        assert await session.run_command('mkdir docs', 'host') == ['mkdir: docs: File exists']
        assert await session.run_command('touch', 'host') == ['usage: touch <name>']

        names = [child.name for child in session.root.children]
        assert names == ['src', 'package.json', 'docs', 'notes.md']
        assert session.root.child_named('docs').is_folder

    @pytest.mark.asyncio
    async def test_npm_install_package_records_dependency(self, session):
        output = await session.run_command('npm install express', 'host')

        assert output == ['Installing express...', '✓ express installed successfully']
        assert session.dependencies == ['express']
        manifest = json.loads(session.read_file('package.json'))
        assert manifest['dependencies'] == {'express': 'latest'}

    @pytest.mark.asyncio
    async def test_npm_run_scripts(self, session):
        assert await session.run_command('npm run dev', 'host') == [
            'Starting development server...',
            '✓ Server running on http://localhost:3000',
        ]
        assert await session.run_command('npm run build', 'host') == ['Missing script: "build"']
        assert await session.run_command('npm run', 'host') == ['Scripts available: start, dev']

    @pytest.mark.asyncio
    async def test_clear(self, session):
        await session.run_command('ls', 'host')
        terminal = session.terminal()

        assert await session.run_command('clear', 'host') == []
        assert list(terminal.lines) == ['$ Terminal cleared']
        assert terminal.generation == 1

    @pytest.mark.asyncio
    async def test_concurrent_commands_do_not_interleave(self):
        """Output always directly follows its own echo line."""
        settings = Settings(session=SessionSettings(command_delay=0.01))
        session = CollaborationSession('host', settings=settings)

        await asyncio.gather(
            session.run_command('npm start', 'host'),
            session.run_command('pwd', 'host'),
            session.run_command('ls', 'host'),
        )

        lines = list(session.terminal().lines)[len(WELCOME):]
        assert lines == [
            '$ npm start',
            'Starting application...',
            '> streaming-project@1.0.0 start',
            'Hello, streaming world!',
            '$ pwd',
            '/streaming-project',
            '$ ls',
            'src/  package.json',
        ]

    @pytest.mark.asyncio
    async def test_command_notifications(self):
        bus = EventBus()
        issued = []
        hook_calls = []
        bus.add_listener(TerminalCommandIssued, issued.append)
        session = CollaborationSession(
            'host', bus=bus, on_terminal_command=lambda c, t: hook_calls.append((c, t))
        )
        terminal = session.new_terminal('host')

        await session.run_command('ls', 'host', terminal_id=terminal.id)

        assert issued == [TerminalCommandIssued('ls', terminal.id, 'host')]
        assert hook_calls == [('ls', terminal.id)]
        assert terminal.name == 'Terminal 2'
        assert list(session.terminal('main').lines) == WELCOME


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_closed_session_rejects_mutation(self, session):
        session.close()
        session.close()

        with pytest.raises(SessionClosedError):
            session.write_file('main.js', 'x', actor_id='host')
        with pytest.raises(SessionClosedError):
            await session.run_command('ls', 'host')
        with pytest.raises(SessionClosedError):
            session.create_node('x', NodeKind.FILE)
        assert 'Hello' in session.read_file('main.js')
