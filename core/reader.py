"""Device handle abstraction and the per-device read/dispatch pipeline"""
import abc
import logging
import threading
from typing import Optional

from core.errors import DeviceDisconnected
from core.events import EventBus
from core.state import AXIS, DeviceDescriptor, RawSample, StateChange, StateStore
from profiles import Profile

LOG = logging.getLogger("jscal.reader")


class DeviceHandle(abc.ABC):
    """An open input device.

    read_next() blocks until a sample is available (blocking mode) or returns
    None when nothing is pending (non-blocking mode). Closing the handle from
    another thread makes a pending read_next() raise DeviceDisconnected.
    """

    @abc.abstractmethod
    def descriptor(self) -> DeviceDescriptor:
        raise NotImplementedError

    @abc.abstractmethod
    def read_next(self) -> Optional[RawSample]:
        raise NotImplementedError

    @abc.abstractmethod
    def close(self):
        raise NotImplementedError

    @property
    @abc.abstractmethod
    def closed(self) -> bool:
        raise NotImplementedError

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class DeviceReader:
    """Runs read -> decode -> resolve -> normalize -> apply -> notify for one device.

    The reader thread is the only writer of the device's StateStore. Observers
    subscribed via subscribe() are called on that thread, synchronously, for
    every applied event. Observers of on_disconnect get the DeviceDescriptor
    once when the device goes away.
    """

    def __init__(self, handle: DeviceHandle, mapping, calibration, bus: Optional[EventBus] = None):
        self.handle = handle
        self.desc = handle.descriptor()
        self.mapping = mapping
        self.calibration = calibration
        self.store = StateStore(self.desc.path, mapping.axis_count, mapping.button_count)
        self.bus = bus if bus is not None else EventBus(f"state:{self.desc.path}")
        self.on_disconnect = EventBus(f"disconnect:{self.desc.path}")
        self._t = None
        self._stop = threading.Event()
        self.disconnected = threading.Event()

    @classmethod
    def open(cls, path: str, profiles=None, blocking: bool = True):
        """Open a joydev device and wire it up with its saved (or default) profile."""
        from devices.joystick import JoystickDevice

        handle = JoystickDevice.open(path, blocking=blocking)
        try:
            desc = handle.descriptor()
            if profiles is not None:
                profile = profiles.load_or_default(desc)
            else:
                profile = Profile.default(desc)
            return cls(handle, profile.mapping, profile.engine())
        except BaseException:
            handle.close()
            raise

    def subscribe(self, callback):
        return self.bus.subscribe(callback)

    def unsubscribe(self, sub):
        self.bus.unsubscribe(sub)

    def snapshot(self):
        return self.store.snapshot()

    def profile(self) -> Profile:
        """Current mapping + calibration, ready for ProfileStore.save_profile()."""
        return Profile(self.mapping, self.calibration.records())

    def start(self):
        self._stop.clear()
        self._t = threading.Thread(target=self._loop, name=f"DeviceReader:{self.desc.path}", daemon=True)
        self._t.start()
        LOG.info("reading %s (%s)", self.desc.path, self.desc.name)

    def stop(self, timeout: float = 1.0):
        self._stop.set()
        self.handle.close()
        if self._t and self._t is not threading.current_thread():
            self._t.join(timeout=timeout)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()
        return False

    def process(self, sample: RawSample) -> Optional[StateChange]:
        """Push one raw sample through mapping, calibration and state."""
        event = self.mapping.resolve(sample)
        if event is None:
            return None
        value = event.value
        if event.kind == AXIS and event.calibrate:
            value = self.calibration.normalize(event.index, value)
        try:
            change = self.store.apply(event, value)
        except IndexError:
            LOG.warning("%s: dropping %s for logical %s %d outside the state",
                        self.desc.path, sample, event.kind, event.index)
            return None
        self.bus.publish(change)
        return change

    def pump(self) -> int:
        """Process every pending sample without blocking (non-blocking handles)."""
        count = 0
        while True:
            sample = self.handle.read_next()
            if sample is None:
                return count
            self.process(sample)
            count += 1

    def _loop(self):
        try:
            while not self._stop.is_set():
                sample = self.handle.read_next()
                if sample is None:
                    # non-blocking handle with nothing pending
                    self._stop.wait(1.0 / 120.0)
                    continue
                self.process(sample)
        except DeviceDisconnected as e:
            if not self._stop.is_set():
                LOG.warning("%s disconnected: %s", self.desc.path, e.reason)
                self.disconnected.set()
                self.on_disconnect.publish(self.desc)
        except Exception:
            LOG.exception("error in reader loop for %s", self.desc.path)
            self.disconnected.set()
            self.on_disconnect.publish(self.desc)
        finally:
            self.handle.close()
            LOG.info("stopped reading %s", self.desc.path)
