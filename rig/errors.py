"""Exception types raised by the studio rig."""

from __future__ import annotations

from typing import Optional


class StudioError(Exception):
    """Base exception for studio rig errors."""
    pass


class NotConnected(StudioError):
    """The synthesis engine is not reachable."""
    pass


class TopologyNotReady(StudioError):
    """The root processing groups have not been created yet."""
    pass


class UnassignedGroup(StudioError):
    """Playback attempted on an instrument without a processing group."""
    pass


class MixerNotRunning(StudioError):
    """Master control used before the mixer node was started."""
    pass


class BusExhaustion(StudioError):
    """The dynamic audio bus pool has no free numbers left."""
    pass


class UnknownInstrument(StudioError, LookupError):
    """No instrument is registered under the given name."""
    pass


class UnknownTrack(StudioError, LookupError):
    """No session track is registered under the given name."""
    pass


class BootFailed(StudioError):
    """The boot sequence ended in a permanent failure."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class ChainAttached(StudioError):
    """The instrument's out-bus belongs to its effect chain."""
    pass
