"""
Collaboration session: shared file tree, terminals and participant roster.

The session is the single owner of the project tree and the terminal
transcripts. Every mutation goes through a session method, and every
mutating method checks the actor's edit permission before touching state.
Open tabs and the active file are stored as node ids, so reads always go
through the canonical node and can never observe a stale copy.

Remote peers are wired in through two seams:
- inbound: on_participant_joined / on_participant_left /
  on_permission_changed / on_remote_edit, fed by a real-time channel
- outbound: on_code_change / on_terminal_command callbacks, plus events
  published on the EventBus
"""

import asyncio
import itertools
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from .config import Settings
from .errors import (
    InvalidNodeError,
    InvalidStateError,
    NodeNotFoundError,
    ParticipantNotFoundError,
    PermissionDenied,
    SessionClosedError,
)
from .events import (
    CodeChanged,
    EventBus,
    FileSaved,
    HandRaised,
    ParticipantJoined,
    ParticipantLeft,
    PermissionChanged,
    TerminalCommandIssued,
)

logger = logging.getLogger(__name__)

ROOT_ID = 'project'
PACKAGE_JSON_ID = 'package.json'
MAIN_TERMINAL_ID = 'main'

WELCOME_LINES = (
    '$ Welcome to Code-OSS Integrated Terminal',
    '$ Type commands here to execute in real-time',
)

MAIN_JS = (
    '// Welcome to live coding session!\n'
    '\n'
    'function main() {\n'
    '    console.log("Hello, streaming world!");\n'
    '}\n'
    '\n'
    'main();'
)

INDEX_HTML = (
    '<!DOCTYPE html>\n'
    '<html>\n'
    '<head>\n'
    '    <title>Live Coding</title>\n'
    '</head>\n'
    '<body>\n'
    '    <h1>Live Coding Session</h1>\n'
    '    <script src="main.js"></script>\n'
    '</body>\n'
    '</html>'
)

LANGUAGES = {
    '.js': 'javascript',
    '.ts': 'typescript',
    '.html': 'html',
    '.css': 'css',
    '.json': 'json',
    '.md': 'markdown',
    '.py': 'python',
}


def _package_json(project_name: str) -> str:
    manifest = {
        'name': project_name,
        'version': '1.0.0',
        'description': 'Live coding session',
        'main': 'src/main.js',
        'scripts': {
            'start': 'node src/main.js',
            'dev': 'nodemon src/main.js',
        },
        'dependencies': {},
        'devDependencies': {},
    }
    return json.dumps(manifest, indent=2)


def _language_for(name: str) -> Optional[str]:
    dot = name.rfind('.')
    if dot < 0:
        return None
    return LANGUAGES.get(name[dot:].lower())


class NodeKind(str, Enum):
    FILE = 'file'
    FOLDER = 'folder'


@dataclass(eq=False)
class FileNode:
    """
    One file or folder in the project tree.

    Folders own their children; parent_id is a back-reference only.
    """
    id: str
    name: str
    kind: NodeKind
    content: str = ''
    children: List['FileNode'] = field(default_factory=list)
    parent_id: Optional[str] = None
    language: Optional[str] = None

    @property
    def is_folder(self) -> bool:
        return self.kind == NodeKind.FOLDER

    def child_named(self, name: str) -> Optional['FileNode']:
        for child in self.children:
            if child.name == name:
                return child
        return None


@dataclass
class Participant:
    id: str
    name: str
    can_edit: bool = False
    is_active: bool = True
    hand_raised: bool = False
    is_host: bool = False


class TerminalTranscript:
    """
    Append-only list of terminal lines.

    `clear()` is the only way to drop lines: it starts a new generation whose
    transcript holds a single marker line.
    """

    CLEARED_MARKER = '$ Terminal cleared'

    def __init__(self, terminal_id: str, name: str, lines: Tuple[str, ...] = ()):
        self.id = terminal_id
        self.name = name
        self.generation = 0
        self._lines: List[str] = list(lines)

    @property
    def lines(self) -> Tuple[str, ...]:
        return tuple(self._lines)

    def append(self, line: str) -> None:
        self._lines.append(line)

    def extend(self, lines: List[str]) -> None:
        self._lines.extend(lines)

    def clear(self) -> None:
        self.generation += 1
        self._lines = [self.CLEARED_MARKER]

    def __len__(self) -> int:
        return len(self._lines)


class CollaborationSession:
    """
    Shared state of one in-stream coding session.

    Args:
        host_id: Participant id of the streamer (always allowed to edit)
        settings: Runtime settings (project name, simulated command delay)
        bus: Event bus for outbound notifications (a private one if None)
        host_name: Display name of the host
        on_code_change: Called with (file_id, content) after a local change
        on_terminal_command: Called with (command, terminal_id) once a
            command has been accepted

    Example:
        session = CollaborationSession('host-1')
        session.on_participant_joined('p-1', 'Ana')
        session.set_permission('p-1', True, actor_id='host-1')

        await session.run_command('ls', actor_id='p-1')
        session.write_file('main.js', 'main();', actor_id='p-1')
    """

    def __init__(
        self,
        host_id: str,
        settings: Optional[Settings] = None,
        bus: Optional[EventBus] = None,
        host_name: str = 'Host',
        on_code_change: Optional[Callable[[str, str], None]] = None,
        on_terminal_command: Optional[Callable[[str, str], None]] = None,
    ):
        self.host_id = host_id
        self.settings = settings or Settings()
        self.bus = bus or EventBus()
        self.on_code_change = on_code_change
        self.on_terminal_command = on_terminal_command

        self.participants: Dict[str, Participant] = {
            host_id: Participant(host_id, host_name, can_edit=True, is_host=True)
        }
        self.notifications: List[str] = []
        self.dependencies: List[str] = []
        self.closed = False

        self._nodes: Dict[str, FileNode] = {}
        self._ids = itertools.count(1)
        self._open_tabs: List[str] = []
        self._active_file_id: Optional[str] = None

        self._terminals: Dict[str, TerminalTranscript] = {}
        self._terminal_locks: Dict[str, asyncio.Lock] = {}
        self._terminal_ids = itertools.count(2)

        self._seed_project()
        self._add_terminal(MAIN_TERMINAL_ID, 'Terminal 1')
        self.open_file('main.js')

    def _seed_project(self) -> None:
        project_name = self.settings.session.project_name
        root = self._add_node(ROOT_ID, project_name, NodeKind.FOLDER, None)
        src = self._add_node('src', 'src', NodeKind.FOLDER, root)
        self._add_node('main.js', 'main.js', NodeKind.FILE, src, MAIN_JS)
        self._add_node('index.html', 'index.html', NodeKind.FILE, src, INDEX_HTML)
        self._add_node(PACKAGE_JSON_ID, 'package.json', NodeKind.FILE, root,
                       _package_json(project_name))

    def _add_node(
        self,
        node_id: str,
        name: str,
        kind: NodeKind,
        parent: Optional[FileNode],
        content: str = '',
    ) -> FileNode:
        node = FileNode(
            id=node_id,
            name=name,
            kind=kind,
            content=content if kind == NodeKind.FILE else '',
            parent_id=parent.id if parent is not None else None,
            language=_language_for(name) if kind == NodeKind.FILE else None,
        )
        self._nodes[node_id] = node
        if parent is not None:
            parent.children.append(node)
        return node

    def _add_terminal(self, terminal_id: str, name: str) -> TerminalTranscript:
        terminal = TerminalTranscript(terminal_id, name, WELCOME_LINES)
        self._terminals[terminal_id] = terminal
        self._terminal_locks[terminal_id] = asyncio.Lock()
        return terminal

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    def can_edit(self, actor_id: Optional[str]) -> bool:
        """Whether an actor may currently mutate files or run commands."""
        if actor_id == self.host_id:
            return True
        participant = self.participants.get(actor_id)
        return participant is not None and participant.is_active and participant.can_edit

    def _check_open(self) -> None:
        if self.closed:
            raise SessionClosedError("Collaboration session has ended")

    def _authorize(self, actor_id: Optional[str], action: str) -> None:
        self._check_open()
        if not self.can_edit(actor_id):
            logger.warning("Denied %s to %s", action, actor_id)
            raise PermissionDenied(f"{actor_id} is not allowed to {action}", actor_id=actor_id)

    def set_permission(self, participant_id: str, can_edit: bool, actor_id: str) -> Participant:
        """
        Grant or revoke edit permission. Host only.

        Operations already accepted for the participant are not affected.

        Raises:
            PermissionDenied: actor_id is not the host
            ParticipantNotFoundError: Unknown participant
        """
        self._check_open()
        if actor_id != self.host_id:
            logger.warning("Denied permission change by non-host %s", actor_id)
            raise PermissionDenied("Only the host can change permissions", actor_id=actor_id)
        if participant_id == self.host_id:
            raise InvalidStateError("The host's edit permission cannot be changed")
        return self.on_permission_changed(participant_id, can_edit)

    # ------------------------------------------------------------------
    # Inbound channel
    # ------------------------------------------------------------------

    def on_participant_joined(self, participant_id: str, name: str,
                              can_edit: bool = False) -> Participant:
        """A viewer joined (or re-joined) the session."""
        self._check_open()
        participant = self.participants.get(participant_id)
        if participant is None:
            participant = Participant(participant_id, name, can_edit=can_edit)
            self.participants[participant_id] = participant
        else:
            participant.name = name
            participant.is_active = True
        logger.info("Participant %s (%s) joined", participant_id, name)
        self.bus.publish(ParticipantJoined(participant_id, name))
        return participant

    def on_participant_left(self, participant_id: str) -> None:
        participant = self.participants.get(participant_id)
        if participant is None or participant.is_host:
            logger.debug("Ignoring leave for %s", participant_id)
            return
        participant.is_active = False
        participant.hand_raised = False
        logger.info("Participant %s left", participant_id)
        self.bus.publish(ParticipantLeft(participant_id))

    def on_permission_changed(self, participant_id: str, can_edit: bool) -> Participant:
        """Apply a permission change delivered by the channel."""
        self._check_open()
        participant = self.participants.get(participant_id)
        if participant is None:
            raise ParticipantNotFoundError(participant_id)
        participant.can_edit = can_edit
        logger.info("%s edit permission for %s", "Granted" if can_edit else "Revoked", participant_id)
        self.bus.publish(PermissionChanged(participant_id, can_edit))
        return participant

    def on_remote_edit(self, file_id: str, content: str, actor_id: Optional[str] = None) -> FileNode:
        """
        Apply an edit made by a remote peer.

        The outbound on_code_change hook is not called, so the edit is not
        echoed back to the channel it came from.
        """
        if actor_id is not None:
            self._authorize(actor_id, 'edit files')
        else:
            self._check_open()
        node = self._require_file(file_id)
        node.content = content
        self.bus.publish(CodeChanged(file_id, content, actor_id))
        return node

    def raise_hand(self, participant_id: str) -> bool:
        """Toggle a participant's raised hand. Returns the new state."""
        self._check_open()
        participant = self.participants.get(participant_id)
        if participant is None or not participant.is_active:
            raise ParticipantNotFoundError(participant_id)
        participant.hand_raised = not participant.hand_raised
        self.bus.publish(HandRaised(participant_id, participant.hand_raised))
        return participant.hand_raised

    # ------------------------------------------------------------------
    # File tree
    # ------------------------------------------------------------------

    @property
    def root(self) -> FileNode:
        return self._nodes[ROOT_ID]

    def get_node(self, node_id: str) -> FileNode:
        node = self._nodes.get(node_id)
        if node is None:
            raise NodeNotFoundError(node_id)
        return node

    def _require_file(self, file_id: str) -> FileNode:
        node = self.get_node(file_id)
        if node.is_folder:
            raise InvalidNodeError(f"{node.name} is a folder")
        return node

    def read_file(self, file_id: str) -> str:
        return self._require_file(file_id).content

    def walk(self, node_id: Optional[str] = None) -> Iterator[Tuple[str, FileNode]]:
        """Yield (path, node) depth-first, starting at node_id (default: root)."""
        start = self.get_node(node_id or ROOT_ID)
        stack: List[Tuple[str, FileNode]] = [(start.name, start)]
        while stack:
            path, node = stack.pop()
            yield path, node
            for child in reversed(node.children):
                stack.append((f"{path}/{child.name}", child))

    def write_file(self, file_id: str, content: str, actor_id: str) -> FileNode:
        """
        Replace a file's content.

        The change is visible through get_node, read_file, open_tabs and
        active_file before this returns. A "saved" notification is recorded
        and the change is published.

        Raises:
            PermissionDenied: Actor may not edit; content is left unchanged
            NodeNotFoundError: No such file
            InvalidNodeError: file_id names a folder
        """
        self._authorize(actor_id, 'edit files')
        node = self._require_file(file_id)
        self._store(node, content, actor_id)
        self.notifications.append(f"File {node.name} saved")
        self.bus.publish(FileSaved(file_id, node.name, actor_id))
        return node

    def _store(self, node: FileNode, content: str, actor_id: Optional[str]) -> None:
        node.content = content
        self.bus.publish(CodeChanged(node.id, content, actor_id))
        if self.on_code_change is not None:
            self.on_code_change(node.id, content)

    def create_node(
        self,
        name: str,
        kind: NodeKind,
        parent_id: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> FileNode:
        """
        Add a file or folder.

        Args:
            name: Node name (unique among its siblings)
            kind: NodeKind.FILE or NodeKind.FOLDER
            parent_id: Folder to create in (default: project root)
            actor_id: Acting participant; None for the session itself

        Raises:
            NodeNotFoundError: parent_id does not exist
            InvalidNodeError: parent is a file, name is empty or taken
        """
        if actor_id is not None:
            self._authorize(actor_id, 'create files')
        else:
            self._check_open()
        kind = NodeKind(kind)
        name = name.strip()
        if not name or '/' in name:
            raise InvalidNodeError(f"Invalid name: {name!r}")

        parent = self.get_node(parent_id or ROOT_ID)
        if not parent.is_folder:
            raise InvalidNodeError(f"{parent.name} is not a folder")
        if parent.child_named(name) is not None:
            raise InvalidNodeError(f"{name} already exists in {parent.name}")

        node = self._add_node(f"node-{next(self._ids)}", name, kind, parent)
        logger.debug("Created %s %s in %s", kind.value, name, parent.name)
        return node

    def delete_node(self, node_id: str, actor_id: Optional[str] = None) -> List[str]:
        """
        Remove a node and its whole subtree.

        Tabs of removed files are closed. If the active file was removed, the
        last remaining tab becomes active (or none).

        Returns:
            Ids of every removed node
        """
        if actor_id is not None:
            self._authorize(actor_id, 'delete files')
        else:
            self._check_open()
        node = self.get_node(node_id)
        if node.parent_id is None:
            raise InvalidNodeError("Cannot delete the project root")

        removed = [n.id for _, n in self.walk(node_id)]
        parent = self._nodes[node.parent_id]
        parent.children.remove(node)
        for removed_id in removed:
            del self._nodes[removed_id]

        self._open_tabs = [tab for tab in self._open_tabs if tab in self._nodes]
        if self._active_file_id not in self._nodes:
            self._active_file_id = self._open_tabs[-1] if self._open_tabs else None

        logger.debug("Deleted %s (%d nodes)", node.name, len(removed))
        return removed

    # ------------------------------------------------------------------
    # Editor tabs
    # ------------------------------------------------------------------

    def open_file(self, file_id: str) -> FileNode:
        node = self._require_file(file_id)
        if file_id not in self._open_tabs:
            self._open_tabs.append(file_id)
        self._active_file_id = file_id
        return node

    def close_tab(self, file_id: str) -> None:
        if file_id not in self._open_tabs:
            return
        self._open_tabs.remove(file_id)
        if self._active_file_id == file_id:
            self._active_file_id = self._open_tabs[-1] if self._open_tabs else None

    @property
    def open_tabs(self) -> List[FileNode]:
        return [self._nodes[tab] for tab in self._open_tabs]

    @property
    def active_file(self) -> Optional[FileNode]:
        if self._active_file_id is None:
            return None
        return self._nodes[self._active_file_id]

    # ------------------------------------------------------------------
    # Terminals
    # ------------------------------------------------------------------

    @property
    def terminals(self) -> List[TerminalTranscript]:
        return list(self._terminals.values())

    def terminal(self, terminal_id: str = MAIN_TERMINAL_ID) -> TerminalTranscript:
        terminal = self._terminals.get(terminal_id)
        if terminal is None:
            raise LookupError(f"Unknown terminal: {terminal_id}")
        return terminal

    def new_terminal(self, actor_id: str) -> TerminalTranscript:
        self._authorize(actor_id, 'open terminals')
        number = next(self._terminal_ids)
        return self._add_terminal(f"terminal-{number}", f"Terminal {number}")

    async def run_command(self, command: str, actor_id: str,
                          terminal_id: str = MAIN_TERMINAL_ID) -> List[str]:
        """
        Run a command in the simulated terminal.

        The echo line is appended first; the output follows after the
        configured delay. Commands on the same terminal run one at a time, so
        output always directly follows its own echo.

        Returns:
            The output lines appended after the echo

        Raises:
            PermissionDenied: Actor may not edit; the transcript is unchanged
        """
        self._authorize(actor_id, 'run commands')
        terminal = self.terminal(terminal_id)
        command = command.strip()
        if not command:
            return []

        async with self._terminal_locks[terminal_id]:
            terminal.append(f"$ {command}")
            self.bus.publish(TerminalCommandIssued(command, terminal_id, actor_id))
            if self.on_terminal_command is not None:
                self.on_terminal_command(command, terminal_id)

            delay = self.settings.session.command_delay
            if delay > 0:
                await asyncio.sleep(delay)

            if command == 'clear':
                terminal.clear()
                return []
            output = self._execute(command, actor_id)
            terminal.extend(output)
        return output

    def _execute(self, command: str, actor_id: str) -> List[str]:
        parts = command.split()
        program, args = parts[0], parts[1:]

        if program in ('ls', 'dir'):
            listing = '  '.join(
                f"{child.name}/" if child.is_folder else child.name
                for child in self.root.children
            )
            return [listing] if listing else []
        if program == 'pwd':
            return [f"/{self.root.name}"]
        if program == 'help':
            return [
                "Available commands: ls, dir, pwd, mkdir <name>, touch <name>, "
                "npm install [package], npm start, npm run <script>, clear, help"
            ]
        if program == 'mkdir':
            return self._make_node(args, NodeKind.FOLDER, actor_id)
        if program == 'touch':
            return self._make_node(args, NodeKind.FILE, actor_id)
        if program == 'npm' and args:
            if args[0] in ('install', 'i'):
                return self._npm_install(args[1:], actor_id)
            if args[0] == 'start' and len(args) == 1:
                return self._npm_start()
            if args[0] == 'run':
                return self._npm_run(args[1:])
        return [f"Command '{command}' not found"]

    def _make_node(self, args: List[str], kind: NodeKind, actor_id: str) -> List[str]:
        program = 'mkdir' if kind == NodeKind.FOLDER else 'touch'
        if not args:
            return [f"usage: {program} <name>"]
        name = args[0]
        if self.root.child_named(name) is not None:
            if kind == NodeKind.FILE:
                return []
            return [f"mkdir: {name}: File exists"]
        try:
            self.create_node(name, kind, actor_id=actor_id)
        except InvalidNodeError as e:
            return [f"{program}: {e}"]
        if kind == NodeKind.FOLDER:
            return [f"Directory {name} created"]
        return [f"File {name} created"]

    def _npm_install(self, packages: List[str], actor_id: str) -> List[str]:
        if not packages:
            return ['Installing dependencies...', '✓ Dependencies installed successfully']
        output = []
        for package in packages:
            output.append(f"Installing {package}...")
            output.append(f"✓ {package} installed successfully")
            if package not in self.dependencies:
                self.dependencies.append(package)
        self._record_dependencies(actor_id)
        return output

    def _record_dependencies(self, actor_id: str) -> None:
        node = self._nodes.get(PACKAGE_JSON_ID)
        if node is None:
            return
        try:
            manifest = json.loads(node.content)
        except ValueError:
            logger.warning("package.json is not valid JSON, dependencies not recorded")
            return
        dependencies = manifest.setdefault('dependencies', {})
        for package in self.dependencies:
            dependencies.setdefault(package, 'latest')
        self._store(node, json.dumps(manifest, indent=2), actor_id)

    def _scripts(self) -> Dict[str, str]:
        node = self._nodes.get(PACKAGE_JSON_ID)
        if node is None:
            return {}
        try:
            return dict(json.loads(node.content).get('scripts', {}))
        except (ValueError, AttributeError):
            return {}

    def _npm_start(self) -> List[str]:
        return [
            'Starting application...',
            f"> {self.root.name}@1.0.0 start",
            'Hello, streaming world!',
        ]

    def _npm_run(self, args: List[str]) -> List[str]:
        scripts = self._scripts()
        if not args:
            return [f"Scripts available: {', '.join(scripts) or 'none'}"]
        script = args[0]
        if script not in scripts:
            return [f'Missing script: "{script}"']
        if script == 'start':
            return self._npm_start()
        return ['Starting development server...', '✓ Server running on http://localhost:3000']

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Destroy the session (the stream ended). Idempotent."""
        if self.closed:
            return
        self.closed = True
        logger.info("Collaboration session closed")
