"""
Gravity Notes - the note storage and lifecycle engine behind the Gravity editor.
This package keeps one text file per note plus a rebuildable metadata index,
and reclaims notes that were created but abandoned while still empty.

This version uses synchronous operations guarded by per-note locks.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("gravity-notes")
except PackageNotFoundError:
    __version__ = "0.3.0"
