"""Graceful optional dependency imports.

Every other module imports availability flags from here so the try/except
blocks live in exactly one place.
"""

from __future__ import annotations

# -- aalink (Ableton Link tempo sync for the session metronome) -------------

try:
    import aalink
    HAS_LINK = True
except ImportError:
    aalink = None  # type: ignore[assignment]
    HAS_LINK = False
