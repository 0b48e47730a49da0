"""
Exception taxonomy for live sessions.

Acquisition and validation errors are raised to the caller that started the
operation. Permission errors abort only the operation that was refused.
"""


class LiveSessionError(Exception):
    """Base class for all livesession errors."""


class PermissionDenied(LiveSessionError):
    """
    Permission was refused.

    Raised both for OS-level media permission (camera, microphone, screen)
    and for collaboration-session edit permission.
    """

    def __init__(self, message: str, actor_id: str = None):
        super().__init__(message)
        self.actor_id = actor_id


class DeviceNotFoundError(LiveSessionError):
    """The requested capture device does not exist (or no longer exists)."""

    def __init__(self, message: str, device_id: str = None):
        super().__init__(message)
        self.device_id = device_id


# Name used by the platform media APIs
NotFoundError = DeviceNotFoundError


class OverconstrainedError(LiveSessionError):
    """Requested constraints cannot be satisfied by the hardware."""

    def __init__(self, message: str, constraint: str = None):
        super().__init__(message)
        self.constraint = constraint


class EmptySourceSetError(LiveSessionError):
    """A stream was requested from sources carrying no live tracks."""


class ValidationError(LiveSessionError):
    """
    An intro upload was rejected.

    Attributes:
        reason: User-facing explanation of the rejection
        field: Which limit was violated ('format', 'duration', 'size')
    """

    def __init__(self, reason: str, field: str = None):
        super().__init__(reason)
        self.reason = reason
        self.field = field


class NodeNotFoundError(LiveSessionError):
    """No file or folder with the given id exists in the session tree."""

    def __init__(self, node_id: str):
        super().__init__(f"Node not found: {node_id}")
        self.node_id = node_id


class InvalidNodeError(LiveSessionError):
    """Operation does not apply to this kind of node (e.g. writing a folder)."""


class CaptureInProgressError(LiveSessionError):
    """A start request arrived while a previous one is still pending."""


class SessionClosedError(LiveSessionError):
    """The collaboration session has been destroyed."""


class InvalidStateError(LiveSessionError):
    """Operation is not valid in the current state-machine phase."""


class ParticipantNotFoundError(LiveSessionError, LookupError):
    """No participant with the given id is on the session roster."""

    def __init__(self, participant_id: str):
        super().__init__(f"Participant not found: {participant_id}")
        self.participant_id = participant_id
