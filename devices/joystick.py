"""Linux joystick API (joydev) device handle

Opens /dev/input/jsN, queries the static description via ioctl and yields
RawSample objects. Reads wait in select() on the device fd and on a wake-up
pipe, so close() from another thread ends a blocked read_next() at once.
"""
import array
import errno
import fcntl
import glob
import logging
import os
import select
import struct
import threading
from collections import deque

from core.errors import DeviceDisconnected, DeviceUnavailable
from core.reader import DeviceHandle
from core.state import DeviceDescriptor
from devices.decoder import JS_EVENT_SIZE, EventDecoder

LOG = logging.getLogger("jscal.device")

DEFAULT_PATTERN = "/dev/input/js*"

# ioctl request encoding, see asm-generic/ioctl.h
_IOC_WRITE = 1
_IOC_READ = 2


def _IOC(direction, nr, size):
    return (direction << 30) | (size << 16) | (ord("j") << 8) | nr


ABS_CNT = 0x40
KEY_MAX = 0x2FF
BTN_MISC = 0x100
NAME_LEN = 128

JSIOCGVERSION = _IOC(_IOC_READ, 0x01, 4)
JSIOCGAXES = _IOC(_IOC_READ, 0x11, 1)
JSIOCGBUTTONS = _IOC(_IOC_READ, 0x12, 1)
JSIOCGNAME = _IOC(_IOC_READ, 0x13, NAME_LEN)
JSIOCGAXMAP = _IOC(_IOC_READ, 0x32, ABS_CNT)
JSIOCGBTNMAP = _IOC(_IOC_READ, 0x34, (KEY_MAX - BTN_MISC + 1) * 2)

# struct js_corr { __s32 coef[8]; __s16 prec; __u16 type; }
JS_CORR = struct.Struct("8ihH")
JS_CORR_NONE = 0x00
# size field covers one record; the driver copies one per axis
JSIOCSCORR = _IOC(_IOC_WRITE, 0x21, JS_CORR.size)

READ_CHUNK = JS_EVENT_SIZE * 64


def list_devices(pattern: str = DEFAULT_PATTERN):
    """Candidate joystick device paths, sorted by their numeric suffix."""
    def sort_key(path):
        digits = "".join(ch for ch in os.path.basename(path) if ch.isdigit())
        return (int(digits) if digits else -1, path)
    return sorted(glob.glob(pattern), key=sort_key)


def _ioctl_u8(fd, request):
    buf = array.array("B", [0])
    fcntl.ioctl(fd, request, buf, True)
    return buf[0]


def query_descriptor(fd, path) -> DeviceDescriptor:
    """Read name, counts and kernel axis/button codes from an open joydev fd."""
    axes = _ioctl_u8(fd, JSIOCGAXES)
    buttons = _ioctl_u8(fd, JSIOCGBUTTONS)

    name_buf = array.array("B", [0] * NAME_LEN)
    try:
        fcntl.ioctl(fd, JSIOCGNAME, name_buf, True)
        name = name_buf.tobytes().split(b"\0", 1)[0].decode("utf-8", "replace")
    except OSError:
        name = "Unknown"

    version = None
    ver_buf = array.array("I", [0])
    try:
        fcntl.ioctl(fd, JSIOCGVERSION, ver_buf, True)
        version = ver_buf[0]
    except OSError:
        LOG.debug("%s: JSIOCGVERSION not supported", path)

    axis_codes = ()
    button_codes = ()
    try:
        axmap = array.array("B", [0] * ABS_CNT)
        fcntl.ioctl(fd, JSIOCGAXMAP, axmap, True)
        axis_codes = tuple(axmap[:axes])
        btnmap = array.array("H", [0] * (KEY_MAX - BTN_MISC + 1))
        fcntl.ioctl(fd, JSIOCGBTNMAP, btnmap, True)
        button_codes = tuple(btnmap[:buttons])
    except OSError as e:
        LOG.debug("%s: could not read kernel axis/button maps: %s", path, e)

    return DeviceDescriptor(
        path=path,
        name=name,
        axis_count=axes,
        button_count=buttons,
        driver_version=version,
        axis_codes=axis_codes,
        button_codes=button_codes,
    )


class JoystickDevice(DeviceHandle):
    """An open /dev/input/jsN device."""

    def __init__(self, fd, path, blocking=True):
        self._fd = fd
        self.path = path
        self.blocking = blocking
        self._decoder = EventDecoder()
        self._pending = deque()
        self._lock = threading.Lock()
        self._closed = False
        self._released = False
        self._readers = 0
        self._wake_r = self._wake_w = -1
        try:
            self._wake_r, self._wake_w = os.pipe()
            self._desc = query_descriptor(fd, path)
        except BaseException:
            self._release()
            raise

    @classmethod
    def open(cls, path, blocking=True):
        try:
            fd = os.open(path, os.O_RDONLY | os.O_NONBLOCK)
        except FileNotFoundError as e:
            raise DeviceUnavailable(path, "no such device") from e
        except PermissionError as e:
            raise DeviceUnavailable(path, "permission denied") from e
        except OSError as e:
            raise DeviceUnavailable(path, os.strerror(e.errno) if e.errno else str(e)) from e
        try:
            dev = cls(fd, path, blocking=blocking)
        except OSError as e:
            # ioctl rejected: not a joydev node
            raise DeviceUnavailable(path, f"not a joystick device ({e})") from e
        LOG.info("opened %s: %s (%d axes, %d buttons, driver %s)", path, dev._desc.name,
                 dev._desc.axis_count, dev._desc.button_count, dev._desc.version_string())
        return dev

    def descriptor(self) -> DeviceDescriptor:
        return self._desc

    @property
    def closed(self) -> bool:
        return self._closed

    def fileno(self):
        return self._fd

    def read_next(self):
        with self._lock:
            if self._closed:
                raise DeviceDisconnected(self.path, "handle closed")
            self._readers += 1
        try:
            return self._read()
        finally:
            with self._lock:
                self._readers -= 1
                release = self._closed and self._readers == 0
            if release:
                self._release()

    def _read(self):
        while True:
            if self._pending:
                return self._pending.popleft()
            if self._closed:
                raise DeviceDisconnected(self.path, "handle closed")
            timeout = None if self.blocking else 0
            try:
                ready, _, _ = select.select([self._fd, self._wake_r], [], [], timeout)
            except (OSError, ValueError) as e:
                raise DeviceDisconnected(self.path, "handle closed") from e
            if self._wake_r in ready or self._closed:
                raise DeviceDisconnected(self.path, "handle closed")
            if not ready:
                return None
            try:
                buf = os.read(self._fd, READ_CHUNK)
            except BlockingIOError:
                continue
            except OSError as e:
                if e.errno in (errno.ENODEV, errno.EIO, errno.EBADF):
                    raise DeviceDisconnected(self.path, os.strerror(e.errno)) from e
                raise
            if not buf:
                raise DeviceDisconnected(self.path, "end of file")
            self._pending.extend(self._decoder.decode_many(buf))

    def clear_kernel_correction(self):
        """Turn off joydev's own correction so read values are the raw ones."""
        if self._desc.axis_count == 0:
            return
        corr = bytearray(JS_CORR.pack(*([0] * 8), 0, JS_CORR_NONE) * self._desc.axis_count)
        try:
            fcntl.ioctl(self._fd, JSIOCSCORR, corr, True)
        except OSError as e:
            LOG.warning("%s: could not clear kernel correction: %s", self.path, e)
        else:
            LOG.info("%s: kernel correction cleared", self.path)

    def close(self):
        with self._lock:
            if self._closed:
                return
            self._closed = True
            try:
                os.write(self._wake_w, b"x")
            except OSError:
                pass
            # a blocked reader releases the fds on its way out
            release = self._readers == 0
        if release:
            self._release()
        LOG.info("closed %s", self.path)

    def _release(self):
        with self._lock:
            if self._released:
                return
            self._released = True
            self._closed = True
        for fd in (self._fd, self._wake_r, self._wake_w):
            if fd < 0:
                continue
            try:
                os.close(fd)
            except OSError:
                pass

    def __repr__(self):
        return f"<JoystickDevice {self.path} {'closed' if self._closed else 'open'}>"

