"""Device handle backed by pygame.joystick (SDL)

For platforms without joydev device files. SDL has no per-event stream we can
block on per device, so the handle polls the joystick and emits a RawSample for
every axis/button whose value changed since the last poll. Axis values are
scaled from SDL's -1.0..1.0 to the joydev integer range so calibration records
are interchangeable between backends.
"""
import logging
import threading
import time
from collections import deque

from core.errors import DeviceDisconnected, DeviceUnavailable
from core.reader import DeviceHandle
from core.state import AXIS, BUTTON, NATIVE_AXIS_MAX, NATIVE_AXIS_MIN, DeviceDescriptor, RawSample

try:
    import pygame
except Exception:
    pygame = None

LOG = logging.getLogger("jscal.sdl")

POLL_HZ = 120.0


def _to_native(value: float) -> int:
    iv = int(round(value * NATIVE_AXIS_MAX))
    return max(NATIVE_AXIS_MIN, min(NATIVE_AXIS_MAX, iv))


def list_joysticks():
    """Return [(index, name)] of the joysticks SDL can see."""
    if pygame is None:
        LOG.warning("pygame not available — SDL backend disabled")
        return []
    pygame.init()
    pygame.joystick.init()
    found = []
    for i in range(pygame.joystick.get_count()):
        js = pygame.joystick.Joystick(i)
        found.append((i, js.get_name() or ""))
    return found


class SdlDeviceHandle(DeviceHandle):
    """Reads one joystick through pygame.

    `joystick` is anything with pygame.joystick.Joystick's get_* interface;
    `pump` is called before each poll (pygame.event.pump by default).
    """

    def __init__(self, joystick, path, blocking=True, pump=None, clock=time.monotonic):
        self._js = joystick
        self.path = path
        self.blocking = blocking
        self._pump = pump
        self._clock = clock
        self._t0 = clock()
        self._closed = False
        self._wake = threading.Event()
        self._pending = deque()
        self._desc = DeviceDescriptor(
            path=path,
            name=joystick.get_name() or "Unknown",
            axis_count=joystick.get_numaxes(),
            button_count=joystick.get_numbuttons(),
        )
        self._axes = [None] * self._desc.axis_count
        self._buttons = [None] * self._desc.button_count
        self._initial = True

    @classmethod
    def open(cls, index: int, blocking=True):
        path = f"sdl:{index}"
        if pygame is None:
            raise DeviceUnavailable(path, "pygame not available")
        pygame.init()
        pygame.joystick.init()
        if not 0 <= index < pygame.joystick.get_count():
            raise DeviceUnavailable(path, "no such joystick")
        try:
            js = pygame.joystick.Joystick(index)
            js.init()
        except pygame.error as e:
            raise DeviceUnavailable(path, str(e)) from e
        LOG.info(f"Found joystick: {js.get_name()} (index {index}, axes={js.get_numaxes()}, buttons={js.get_numbuttons()})")
        return cls(js, path, blocking=blocking, pump=pygame.event.pump)

    def descriptor(self) -> DeviceDescriptor:
        return self._desc

    @property
    def closed(self) -> bool:
        return self._closed

    def _poll(self):
        if self._pump is not None:
            self._pump()
        ts = int((self._clock() - self._t0) * 1000) & 0xFFFFFFFF
        try:
            axes = [_to_native(self._js.get_axis(i)) for i in range(self._desc.axis_count)]
            buttons = [bool(self._js.get_button(i)) for i in range(self._desc.button_count)]
        except Exception as e:
            raise DeviceDisconnected(self.path, f"joystick read failed ({e})") from e
        for i, v in enumerate(axes):
            if v != self._axes[i]:
                self._axes[i] = v
                self._pending.append(RawSample(AXIS, i, v, ts, self._initial))
        for i, v in enumerate(buttons):
            if v != self._buttons[i]:
                self._buttons[i] = v
                self._pending.append(RawSample(BUTTON, i, v, ts, self._initial))
        self._initial = False

    def read_next(self):
        while True:
            if self._closed:
                raise DeviceDisconnected(self.path, "handle closed")
            if self._pending:
                return self._pending.popleft()
            self._poll()
            if self._pending:
                continue
            if not self.blocking:
                return None
            self._wake.wait(1.0 / POLL_HZ)

    def close(self):
        if self._closed:
            return
        self._closed = True
        self._wake.set()
        try:
            quit_ = getattr(self._js, "quit", None)
            if quit_ is not None:
                quit_()
        except Exception:
            LOG.debug("joystick quit failed for %s", self.path, exc_info=True)
        LOG.info("closed %s", self.path)
