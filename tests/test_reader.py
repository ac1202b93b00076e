import threading
from collections import deque

import pytest

from calibration import CalibrationEngine, CalibrationRecord
from core.errors import DeviceDisconnected
from core.reader import DeviceHandle, DeviceReader
from core.state import AXIS, BUTTON, DeviceDescriptor, RawSample, StateChange
from mapper import BUTTON_TO_AXIS, MappingEntry, MappingTable
from profiles import ProfileStore


class FakeHandle(DeviceHandle):
    """Non-blocking handle fed from a list; raises DeviceDisconnected once drained if told to."""

    def __init__(self, samples=(), axes=2, buttons=4, disconnect_when_empty=False):
        self._desc = DeviceDescriptor("fake0", "Fake Pad", axes, buttons)
        self.samples = deque(samples)
        self.disconnect_when_empty = disconnect_when_empty
        self._closed = False

    def descriptor(self):
        return self._desc

    def read_next(self):
        if self._closed:
            raise DeviceDisconnected("fake0", "handle closed")
        if self.samples:
            return self.samples.popleft()
        if self.disconnect_when_empty:
            raise DeviceDisconnected("fake0")
        return None

    def close(self):
        self._closed = True

    @property
    def closed(self):
        return self._closed


def make_reader(handle, mapping=None, engine=None):
    desc = handle.descriptor()
    mapping = mapping or MappingTable.identity(desc.axis_count, desc.button_count)
    return DeviceReader(handle, mapping, engine or CalibrationEngine())


def test_pipeline_normalizes_and_notifies():
    engine = CalibrationEngine({0: CalibrationRecord(min=-32767, center=0, max=32767, deadzone=500)})
    reader = make_reader(FakeHandle([
        RawSample(AXIS, 0, 16000),
        RawSample(BUTTON, 1, True),
        RawSample(AXIS, 0, -500),
    ]), engine=engine)
    changes = []
    reader.subscribe(changes.append)

    assert reader.pump() == 3
    assert changes[0].kind == AXIS and changes[0].value == pytest.approx(0.488, abs=1e-3)
    assert changes[1] == StateChange(BUTTON, 1, True)
    assert changes[2] == StateChange(AXIS, 0, 0.0)
    assert reader.snapshot().axes == (0.0, 0.0)
    assert reader.snapshot().buttons == (False, True, False, False)


def test_button_to_axis_in_snapshot():
    mapping = MappingTable(6, 4, [MappingEntry(i, i, BUTTON) for i in range(3)])
    mapping.set_entry(MappingEntry(3, 5, BUTTON_TO_AXIS))
    reader = make_reader(FakeHandle(axes=2, buttons=4), mapping=mapping)

    reader.process(RawSample(BUTTON, 3, True))
    assert reader.snapshot().axes[5] == 1.0
    reader.process(RawSample(BUTTON, 3, False))
    assert reader.snapshot().axes[5] == -1.0
    assert reader.snapshot().buttons == (False, False, False, False)


def test_disabled_input_leaves_state_unchanged():
    reader = make_reader(FakeHandle())
    reader.mapping.disable(AXIS, 1)
    seen = []
    reader.subscribe(seen.append)
    assert reader.process(RawSample(AXIS, 1, 30000)) is None
    assert reader.snapshot().axes == (0.0, 0.0)
    assert seen == []


def test_out_of_range_physical_index_is_ignored():
    reader = make_reader(FakeHandle())
    assert reader.process(RawSample(BUTTON, 200, True)) is None
    assert reader.snapshot().buttons == (False,) * 4


def test_mapping_edit_applies_to_next_sample():
    reader = make_reader(FakeHandle())
    reader.process(RawSample(AXIS, 0, 32767))
    reader.mapping.set_entry(MappingEntry(0, 1, AXIS))
    reader.process(RawSample(AXIS, 0, -32767))
    assert reader.snapshot().axes == (1.0, -1.0)


def test_calibration_session_sees_pipeline_samples():
    reader = make_reader(FakeHandle())
    session = reader.calibration.begin_session(0)
    for raw in (-1000, 0, 2000):
        reader.process(RawSample(AXIS, 0, raw))
    session.set_center(0)
    session.commit()
    assert reader.calibration.record(0) == CalibrationRecord(min=-1000, center=0, max=2000)
    reader.process(RawSample(AXIS, 0, 1000))
    assert reader.snapshot().axes[0] == pytest.approx(0.5)


def test_disconnect_ends_loop_and_notifies():
    handle = FakeHandle([RawSample(AXIS, 0, 32767)], disconnect_when_empty=True)
    reader = make_reader(handle)
    gone = []
    reader.on_disconnect.subscribe(gone.append)

    reader.start()
    assert reader.disconnected.wait(2.0)
    reader.stop()

    assert gone == [handle.descriptor()]
    assert handle.closed
    assert reader.snapshot().axes[0] == 1.0


def test_stop_closes_handle_without_disconnect_notice():
    handle = FakeHandle()
    reader = make_reader(handle)
    gone = []
    reader.on_disconnect.subscribe(gone.append)
    reader.start()
    reader.stop()
    assert handle.closed
    assert not reader.disconnected.is_set()
    assert gone == []


def test_profile_saves_current_state(tmp_path):
    reader = make_reader(FakeHandle())
    reader.calibration.set_record(1, CalibrationRecord(min=-10, center=0, max=10, deadzone=1))
    store = ProfileStore(str(tmp_path))
    store.save_profile(reader.desc.identity, reader.profile())

    loaded = store.load(reader.desc.identity)
    assert loaded.mapping == reader.mapping
    assert loaded.calibrations == {1: CalibrationRecord(min=-10, center=0, max=10, deadzone=1)}


def test_observer_sees_consistent_snapshot():
    reader = make_reader(FakeHandle([RawSample(AXIS, 1, 32767)]))
    seen = []
    reader.subscribe(lambda c: seen.append(reader.snapshot().axes[c.index]))
    reader.pump()
    assert seen == [1.0]


def test_open_missing_device_raises():
    from core.errors import DeviceUnavailable
    with pytest.raises(DeviceUnavailable):
        DeviceReader.open("/nonexistent/js9")


def test_reader_thread_is_only_writer():
    handle = FakeHandle([RawSample(AXIS, 0, v) for v in range(-32767, 32767, 4096)])
    reader = make_reader(handle)
    done = threading.Event()
    last = []

    def on_change(c):
        last.append(threading.current_thread().name)
        if not handle.samples:
            done.set()

    reader.subscribe(on_change)
    reader.start()
    assert done.wait(2.0)
    reader.stop()
    assert set(last) == {"DeviceReader:fake0"}
