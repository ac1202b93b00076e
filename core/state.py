"""State models and lightweight DTOs"""
import logging
import threading
from dataclasses import dataclass, field
from typing import Optional, Tuple, Union

LOG = logging.getLogger("jscal.state")

AXIS = "axis"
BUTTON = "button"

# joydev reports axes in -32767..32767 after its own correction
NATIVE_AXIS_MIN = -32767
NATIVE_AXIS_MAX = 32767


@dataclass(frozen=True)
class DeviceDescriptor:
    path: str
    name: str
    axis_count: int
    button_count: int
    driver_version: Optional[int] = None
    axis_codes: Tuple[int, ...] = ()
    button_codes: Tuple[int, ...] = ()
    axis_range: Tuple[int, int] = (NATIVE_AXIS_MIN, NATIVE_AXIS_MAX)

    @property
    def identity(self) -> str:
        """Stable key for saved calibration/mapping; independent of the device path."""
        return f"{self.name}/{self.axis_count}a/{self.button_count}b"

    def version_string(self) -> str:
        if self.driver_version is None:
            return "unknown"
        v = self.driver_version
        return f"{v >> 16}.{(v >> 8) & 0xFF}.{v & 0xFF}"


@dataclass(frozen=True)
class RawSample:
    kind: str  # AXIS or BUTTON
    index: int  # physical index
    value: Union[int, bool]
    timestamp: int = 0  # milliseconds, driver clock
    initial: bool = False  # synthetic initial-state record


@dataclass(frozen=True)
class LogicalEvent:
    """A sample after mapping: targets a logical axis or button.

    `calibrate` is False when the value is already normalized (button_to_axis).
    """
    kind: str
    index: int
    value: Union[int, float, bool]
    calibrate: bool = True
    timestamp: int = 0


@dataclass(frozen=True)
class StateChange:
    """Notification payload delivered to EventBus observers."""
    kind: str
    index: int
    value: Union[float, bool]
    timestamp: int = 0


@dataclass(frozen=True)
class DeviceState:
    device: str
    axes: Tuple[float, ...] = field(default_factory=tuple)
    buttons: Tuple[bool, ...] = field(default_factory=tuple)


class StateStore:
    """Current logical state of one device.

    Single writer (the reader pipeline), many readers. Every apply() publishes a
    new immutable DeviceState, so snapshot() never returns a half-updated view.
    The number of axis and button slots is fixed at construction.
    """

    def __init__(self, device: str, axis_count: int, button_count: int):
        self._lock = threading.Lock()
        self._state = DeviceState(
            device=device,
            axes=(0.0,) * axis_count,
            buttons=(False,) * button_count,
        )

    @property
    def axis_count(self) -> int:
        return len(self._state.axes)

    @property
    def button_count(self) -> int:
        return len(self._state.buttons)

    def apply(self, event: LogicalEvent, value) -> StateChange:
        with self._lock:
            cur = self._state
            if event.kind == AXIS:
                if not 0 <= event.index < len(cur.axes):
                    raise IndexError(f"logical axis {event.index} out of range")
                axes = list(cur.axes)
                axes[event.index] = float(value)
                self._state = DeviceState(cur.device, tuple(axes), cur.buttons)
                new_value = axes[event.index]
            elif event.kind == BUTTON:
                if not 0 <= event.index < len(cur.buttons):
                    raise IndexError(f"logical button {event.index} out of range")
                buttons = list(cur.buttons)
                buttons[event.index] = bool(value)
                self._state = DeviceState(cur.device, cur.axes, tuple(buttons))
                new_value = buttons[event.index]
            else:
                raise ValueError(f"unknown event kind {event.kind!r}")
        LOG.debug("%s %s %d -> %s", cur.device, event.kind, event.index, new_value)
        return StateChange(event.kind, event.index, new_value, event.timestamp)

    def snapshot(self) -> DeviceState:
        return self._state
