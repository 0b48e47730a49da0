"""
Media backend implementations.
"""

from .synthetic import SyntheticMediaBackend

__all__ = ['SyntheticMediaBackend']
