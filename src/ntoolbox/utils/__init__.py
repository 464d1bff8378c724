"""
Utility modules for ntoolbox.

This package groups pure helpers shared by the loader and the CLI.
"""

from .crypto import FirmwareEncoder

__all__ = [
    "FirmwareEncoder",
]
