"""
Cadence - Error kinds

None of these is fatal: callers fall back to manual tempo entry or
to playback without cadence sync.
"""


class CadenceError(Exception):
    """Base class for recoverable cadence-sync failures."""


class MotionPermissionError(CadenceError, PermissionError):
    """Motion sensing was denied by the platform or the user."""


class DecodeError(CadenceError):
    """Audio could not be decoded into a usable sample buffer."""


class InsufficientDataError(CadenceError):
    """Not enough audio (or no rhythmic content) to estimate a tempo."""
