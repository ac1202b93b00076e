"""Error taxonomy for the device/calibration core"""


class JscalError(Exception):
    """Base class for all jscal errors."""


class DeviceUnavailable(JscalError):
    """The device could not be opened (missing, permission denied, not a joystick)."""

    def __init__(self, path, reason):
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class DeviceDisconnected(JscalError):
    """The device went away or the handle was closed while reading."""

    def __init__(self, path, reason="device disconnected"):
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class ConfigCorrupt(JscalError):
    """A saved calibration/mapping record exists but cannot be used."""

    def __init__(self, location, reason):
        super().__init__(f"{location}: {reason}")
        self.location = location
        self.reason = reason


class CalibrationSessionClosed(JscalError):
    """The calibration session was already committed, discarded or replaced."""
