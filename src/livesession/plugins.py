"""
Plugin registration system for media backends and transports.

This module provides a simple plugin architecture that allows users to:
- Register custom media backends and stream transports
- Discover available implementations
- Select a backend by name from configuration
"""

from typing import Callable, Dict, Optional, Type

from .base import MediaBackend, StreamTransport


class PluginRegistry:
    """
    Registry for media backends and stream transports.

    This enables dynamic discovery and registration of implementations.
    """

    def __init__(self):
        self._backends: Dict[str, Type[MediaBackend]] = {}
        self._transports: Dict[str, Type[StreamTransport]] = {}

    def register_backend(self, name: str, backend_class: Type[MediaBackend]) -> None:
        """
        Register a media backend implementation.

        Args:
            name: Name to register under (e.g., 'synthetic', 'webview')
            backend_class: Backend class to register

        Example:
            registry.register_backend('synthetic', SyntheticMediaBackend)
        """
        self._backends[name] = backend_class

    def register_transport(self, name: str, transport_class: Type[StreamTransport]) -> None:
        """
        Register a stream transport implementation.

        Args:
            name: Name to register under (e.g., 'callback', 'webrtc')
            transport_class: Transport class to register
        """
        self._transports[name] = transport_class

    def get_backend(self, name: str) -> Optional[Type[MediaBackend]]:
        """Get a registered backend class by name."""
        return self._backends.get(name)

    def get_transport(self, name: str) -> Optional[Type[StreamTransport]]:
        """Get a registered transport class by name."""
        return self._transports.get(name)

    def list_backends(self) -> list[str]:
        """List all registered backend names."""
        return list(self._backends.keys())

    def list_transports(self) -> list[str]:
        """List all registered transport names."""
        return list(self._transports.keys())

    def create_backend(self, name: str, **kwargs) -> MediaBackend:
        """
        Instantiate a backend by name.

        Raises:
            LookupError: If no backend is registered under that name
        """
        backend_class = self.get_backend(name)
        if backend_class is None:
            raise LookupError(
                f"Unknown media backend '{name}', registered: {self.list_backends()}"
            )
        return backend_class(**kwargs)

    def create_transport(self, name: str, **kwargs) -> StreamTransport:
        """
        Instantiate a transport by name.

        Raises:
            LookupError: If no transport is registered under that name
        """
        transport_class = self.get_transport(name)
        if transport_class is None:
            raise LookupError(
                f"Unknown stream transport '{name}', registered: {self.list_transports()}"
            )
        return transport_class(**kwargs)


# Global registry instance
_registry = PluginRegistry()


def register_backend(name: str) -> Callable[[Type[MediaBackend]], Type[MediaBackend]]:
    """
    Decorator to register a media backend.

    Example:
        @register_backend('synthetic')
        class SyntheticMediaBackend(MediaBackend):
            ...
    """
    def decorator(cls: Type[MediaBackend]) -> Type[MediaBackend]:
        _registry.register_backend(name, cls)
        return cls
    return decorator


def register_transport(name: str) -> Callable[[Type[StreamTransport]], Type[StreamTransport]]:
    """
    Decorator to register a stream transport.

    Example:
        @register_transport('callback')
        class CallbackTransport(StreamTransport):
            ...
    """
    def decorator(cls: Type[StreamTransport]) -> Type[StreamTransport]:
        _registry.register_transport(name, cls)
        return cls
    return decorator


def get_registry() -> PluginRegistry:
    """Get the global plugin registry."""
    return _registry
