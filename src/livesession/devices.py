"""
Device inventory: enumerate cameras and microphones for selection.

Labels are only populated by the platform after a permission grant. When
permission is refused the inventory still returns the devices, named
"Unnamed camera 1", "Unnamed microphone 1", ... so a picker can be shown.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .base import DeviceInfo, MediaBackend
from .errors import DeviceNotFoundError
from .media import MediaKind

logger = logging.getLogger(__name__)

_FALLBACK_NAMES = {
    MediaKind.CAMERA: 'Unnamed camera',
    MediaKind.MICROPHONE: 'Unnamed microphone',
}


@dataclass
class DeviceList:
    """Result of DeviceInventory.list_devices()."""
    cameras: List[DeviceInfo] = field(default_factory=list)
    microphones: List[DeviceInfo] = field(default_factory=list)
    permission_granted: bool = False

    def of_kind(self, kind: MediaKind) -> List[DeviceInfo]:
        if kind == MediaKind.CAMERA:
            return self.cameras
        if kind == MediaKind.MICROPHONE:
            return self.microphones
        return []


class DeviceInventory:
    """
    Enumerates capture hardware and keeps a stable selection per kind.

    Example:
        inventory = DeviceInventory(backend)
        devices = await inventory.list_devices()
        inventory.select(MediaKind.CAMERA, devices.cameras[-1].device_id)
        camera_id = inventory.selected(MediaKind.CAMERA)
    """

    def __init__(self, backend: MediaBackend):
        self.backend = backend
        self._devices = DeviceList()
        self._selection: Dict[MediaKind, Optional[str]] = {
            MediaKind.CAMERA: None,
            MediaKind.MICROPHONE: None,
        }

    async def list_devices(self) -> DeviceList:
        """
        Ask for permission, then enumerate devices.

        Returns:
            DeviceList with cameras and microphones; unlabelled devices carry
            a numbered fallback name
        """
        granted = await self.backend.request_permission(
            [MediaKind.CAMERA, MediaKind.MICROPHONE]
        )
        if not granted:
            logger.warning("Media permission denied; device labels will be unavailable")

        result = DeviceList(permission_granted=granted)
        for device in await self.backend.enumerate_devices():
            if device.kind not in _FALLBACK_NAMES:
                continue
            bucket = result.of_kind(device.kind)
            label = device.label or f"{_FALLBACK_NAMES[device.kind]} {len(bucket) + 1}"
            bucket.append(DeviceInfo(device.device_id, device.kind, label, device.group_id))

        self._devices = result
        self._refresh_selection()
        logger.info(
            "Found %d camera(s) and %d microphone(s)",
            len(result.cameras), len(result.microphones)
        )
        return result

    @property
    def devices(self) -> DeviceList:
        """Devices from the last enumeration."""
        return self._devices

    def select(self, kind: MediaKind, device_id: str) -> None:
        """
        Choose the device to use for a kind.

        Raises:
            DeviceNotFoundError: If the id was not in the last enumeration
        """
        self.resolve(kind, device_id)
        self._selection[MediaKind(kind)] = device_id

    def selected(self, kind: MediaKind) -> Optional[str]:
        """Currently selected device id (defaults to the first enumerated)."""
        return self._selection.get(MediaKind(kind))

    def default(self, kind: MediaKind) -> Optional[DeviceInfo]:
        devices = self._devices.of_kind(MediaKind(kind))
        return devices[0] if devices else None

    def resolve(self, kind: MediaKind, device_id: str) -> DeviceInfo:
        """
        Look up a device by id.

        Raises:
            DeviceNotFoundError: If no enumerated device has this id
        """
        for device in self._devices.of_kind(MediaKind(kind)):
            if device.device_id == device_id:
                return device
        raise DeviceNotFoundError(
            f"{MediaKind(kind).value} '{device_id}' is not available", device_id=device_id
        )

    def _refresh_selection(self) -> None:
        # Keep a selection that still exists, otherwise fall back to the first device
        for kind in (MediaKind.CAMERA, MediaKind.MICROPHONE):
            current = self._selection.get(kind)
            ids = [d.device_id for d in self._devices.of_kind(kind)]
            if current not in ids:
                default = self.default(kind)
                self._selection[kind] = default.device_id if default else None
