"""Calibration engine: per-axis raw -> normalized transform and capture sessions"""
import logging
import threading
from dataclasses import dataclass, replace
from typing import Dict, Optional

from core.errors import CalibrationSessionClosed
from core.state import NATIVE_AXIS_MAX, NATIVE_AXIS_MIN

LOG = logging.getLogger("jscal.calibration")


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


@dataclass(frozen=True)
class CalibrationRecord:
    min: int = NATIVE_AXIS_MIN
    center: int = 0
    max: int = NATIVE_AXIS_MAX
    deadzone: int = 0
    inverted: bool = False

    def __post_init__(self):
        if not self.min <= self.center <= self.max:
            raise ValueError(f"calibration needs min <= center <= max, got {self.min}/{self.center}/{self.max}")
        if self.deadzone < 0:
            raise ValueError(f"deadzone must be >= 0, got {self.deadzone}")

    def normalize(self, raw: int) -> float:
        if self.min == self.max:
            return 0.0
        delta = raw - self.center
        if abs(delta) <= self.deadzone:
            return 0.0
        if delta > 0:
            span = self.max - self.center
        else:
            span = self.center - self.min
        if span == 0:
            # raw sits on a side with no calibrated travel (e.g. center == min)
            return 0.0
        val = clamp(delta / span, -1.0, 1.0)
        if self.inverted:
            val = -val
        return val

    def to_dict(self) -> dict:
        return {
            "min": self.min,
            "center": self.center,
            "max": self.max,
            "deadzone": self.deadzone,
            "inverted": self.inverted,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CalibrationRecord":
        fields = {}
        for name in ("min", "center", "max", "deadzone"):
            v = data[name]
            if isinstance(v, bool) or not isinstance(v, int):
                raise ValueError(f"{name} must be an integer, got {v!r}")
            fields[name] = v
        inverted = data.get("inverted", False)
        if not isinstance(inverted, bool):
            raise ValueError(f"inverted must be a boolean, got {inverted!r}")
        return cls(inverted=inverted, **fields)


class CalibrationSession:
    """Observes raw samples of one axis to learn its min/center/max.

    Created by CalibrationEngine.begin_session(); finished by commit() or
    discard(). Samples flowing through the engine for this axis are observed
    automatically while the session is open.
    """

    def __init__(self, engine, axis: int, previous: CalibrationRecord):
        self._engine = engine
        self.axis = axis
        self.previous = previous
        self.min: Optional[int] = None
        self.max: Optional[int] = None
        self.center: Optional[int] = None
        self.samples = 0
        self.closed = False

    def observe(self, raw: int):
        if self.closed:
            return
        raw = int(raw)
        self.min = raw if self.min is None else min(self.min, raw)
        self.max = raw if self.max is None else max(self.max, raw)
        self.samples += 1

    def set_center(self, raw: int):
        self._check_open()
        self.observe(raw)
        self.center = int(raw)
        LOG.debug("axis %d: center set to %d", self.axis, self.center)

    def result(self) -> CalibrationRecord:
        """The record commit() would install, without installing it."""
        if self.samples == 0:
            return self.previous
        center = self.center if self.center is not None else (self.min + self.max) // 2
        return replace(self.previous, min=self.min, center=center, max=self.max)

    def commit(self) -> CalibrationRecord:
        self._check_open()
        if self.samples == 0:
            LOG.warning("axis %d: calibration committed without samples, keeping previous record", self.axis)
        record = self.result()
        self._engine._finish_session(self, record)
        return record

    def discard(self):
        if not self.closed:
            self._engine._finish_session(self, None)

    def _check_open(self):
        if self.closed:
            raise CalibrationSessionClosed(f"calibration session for axis {self.axis} is closed")


class CalibrationEngine:
    """Holds the CalibrationRecord of every logical axis and applies it.

    Axes without a record use the default full-range record. Record changes
    only affect future normalize() calls; the engine never touches state.
    """

    def __init__(self, records: Optional[Dict[int, CalibrationRecord]] = None,
                 default: Optional[CalibrationRecord] = None):
        self._lock = threading.Lock()
        self._records: Dict[int, CalibrationRecord] = dict(records or {})
        self._sessions: Dict[int, CalibrationSession] = {}
        self.default = default or CalibrationRecord()

    def record(self, axis: int) -> CalibrationRecord:
        with self._lock:
            return self._records.get(axis, self.default)

    def set_record(self, axis: int, record: CalibrationRecord):
        with self._lock:
            self._records[axis] = record
        LOG.info("axis %d calibration -> %s", axis, record)

    def reset(self, axis: Optional[int] = None):
        """Drop stored records (all axes, or one) so the default applies again."""
        with self._lock:
            if axis is None:
                self._records.clear()
            else:
                self._records.pop(axis, None)

    def records(self) -> Dict[int, CalibrationRecord]:
        with self._lock:
            return dict(self._records)

    def normalize(self, axis: int, raw: int) -> float:
        with self._lock:
            session = self._sessions.get(axis)
            if session is not None:
                session.observe(raw)
            rec = self._records.get(axis, self.default)
        return rec.normalize(raw)

    def begin_session(self, axis: int) -> CalibrationSession:
        with self._lock:
            prior = self._sessions.pop(axis, None)
            if prior is not None:
                prior.closed = True
                LOG.info("axis %d: replacing open calibration session", axis)
            session = CalibrationSession(self, axis, self._records.get(axis, self.default))
            self._sessions[axis] = session
        return session

    def active_session(self, axis: int) -> Optional[CalibrationSession]:
        with self._lock:
            return self._sessions.get(axis)

    def _finish_session(self, session: CalibrationSession, record: Optional[CalibrationRecord]):
        with self._lock:
            if session.closed:
                if record is None:
                    return
                raise CalibrationSessionClosed(f"calibration session for axis {session.axis} is closed")
            session.closed = True
            if self._sessions.get(session.axis) is session:
                del self._sessions[session.axis]
            if record is not None:
                self._records[session.axis] = record
        if record is not None:
            LOG.info("axis %d calibration committed -> %s", session.axis, record)
        else:
            LOG.info("axis %d calibration discarded", session.axis)
