"""Mapping engine: physical axis/button index -> logical axis/button index"""
import logging
import math
import threading
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Tuple

import yaml

from core.errors import ConfigCorrupt
from core.state import AXIS, BUTTON, NATIVE_AXIS_MAX, LogicalEvent, RawSample

LOG = logging.getLogger("jscal.mapper")

AXIS_TO_BUTTON = "axis_to_button"
BUTTON_TO_AXIS = "button_to_axis"
KINDS = (AXIS, BUTTON, AXIS_TO_BUTTON, BUTTON_TO_AXIS)

DEFAULT_THRESHOLD = 0.5
DEFAULT_PRESSED_VALUE = 1.0
DEFAULT_RELEASED_VALUE = -1.0


@dataclass(frozen=True)
class MappingEntry:
    physical_index: int
    logical_index: int
    kind: str = AXIS
    enabled: bool = True
    # axis_to_button: pressed when raw crosses threshold * native max.
    # Negative thresholds press on the negative side.
    threshold: float = DEFAULT_THRESHOLD
    # button_to_axis: logical axis values for pressed / released
    pressed_value: float = DEFAULT_PRESSED_VALUE
    released_value: float = DEFAULT_RELEASED_VALUE

    def __post_init__(self):
        if self.kind not in KINDS:
            raise ValueError(f"unknown mapping kind {self.kind!r}")
        if self.physical_index < 0 or self.logical_index < 0:
            raise ValueError("mapping indices must be >= 0")
        if not -1.0 <= self.threshold <= 1.0 or self.threshold == 0:
            raise ValueError(f"threshold must be in [-1, 1] and non-zero, got {self.threshold}")
        for name in ("pressed_value", "released_value"):
            v = getattr(self, name)
            if not math.isfinite(v) or not -1.0 <= v <= 1.0:
                raise ValueError(f"{name} must be a finite value in [-1, 1], got {v}")

    @property
    def source(self) -> str:
        """Physical input kind this entry consumes."""
        return AXIS if self.kind in (AXIS, AXIS_TO_BUTTON) else BUTTON

    @property
    def target(self) -> str:
        """Logical output kind this entry produces."""
        return AXIS if self.kind in (AXIS, BUTTON_TO_AXIS) else BUTTON

    @property
    def key(self) -> Tuple[str, int]:
        return (self.source, self.physical_index)

    def to_dict(self) -> dict:
        d = {
            "kind": self.kind,
            "physical": self.physical_index,
            "logical": self.logical_index,
            "enabled": self.enabled,
        }
        if self.kind == AXIS_TO_BUTTON:
            d["threshold"] = self.threshold
        elif self.kind == BUTTON_TO_AXIS:
            d["pressed_value"] = self.pressed_value
            d["released_value"] = self.released_value
        return d

    @classmethod
    def from_dict(cls, data: dict) -> "MappingEntry":
        for name in ("physical", "logical"):
            v = data[name]
            if isinstance(v, bool) or not isinstance(v, int):
                raise ValueError(f"{name} must be an integer, got {v!r}")
        enabled = data.get("enabled", True)
        if not isinstance(enabled, bool):
            raise ValueError(f"enabled must be a boolean, got {enabled!r}")
        return cls(
            physical_index=data["physical"],
            logical_index=data["logical"],
            kind=data.get("kind", AXIS),
            enabled=enabled,
            threshold=float(data.get("threshold", DEFAULT_THRESHOLD)),
            pressed_value=float(data.get("pressed_value", DEFAULT_PRESSED_VALUE)),
            released_value=float(data.get("released_value", DEFAULT_RELEASED_VALUE)),
        )


class MappingTable:
    """Table keyed by (source kind, physical index) -> MappingEntry.

    Being a dict keyed on the physical input, no physical input can feed two
    logical outputs. Physical inputs without an entry, or with a disabled one,
    resolve to nothing. The logical axis/button counts are fixed at
    construction; they size the DeviceState.
    """

    def __init__(self, axis_count: int, button_count: int, entries=(), native_max: int = NATIVE_AXIS_MAX):
        self.axis_count = axis_count
        self.button_count = button_count
        self.native_max = native_max
        self._lock = threading.Lock()
        self._entries: Dict[Tuple[str, int], MappingEntry] = {}
        for e in entries:
            self._check(e)
            self._entries[e.key] = e

    @classmethod
    def identity(cls, axis_count: int, button_count: int, native_max: int = NATIVE_AXIS_MAX):
        entries = [MappingEntry(i, i, AXIS) for i in range(axis_count)]
        entries += [MappingEntry(i, i, BUTTON) for i in range(button_count)]
        return cls(axis_count, button_count, entries, native_max=native_max)

    @classmethod
    def load_profile(cls, path: str):
        """Load a hand-written YAML mapping profile (same layout as to_dict()).

        OSError from opening the file propagates; anything wrong with its
        contents is ConfigCorrupt.
        """
        with open(path, "r", encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f)
            except (UnicodeDecodeError, yaml.YAMLError) as e:
                raise ConfigCorrupt(path, f"unreadable: {e}") from e
        if not isinstance(data, dict):
            raise ConfigCorrupt(path, "top level is not a mapping")
        try:
            return cls.from_dict(data.get("mapping", data))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ConfigCorrupt(path, f"invalid mapping: {e!r}") from e

    def _check(self, entry: MappingEntry):
        limit = self.axis_count if entry.target == AXIS else self.button_count
        if entry.logical_index >= limit:
            raise ValueError(
                f"logical {entry.target} {entry.logical_index} out of range (table has {limit})")

    # --- editing -------------------------------------------------------

    def set_entry(self, entry: MappingEntry) -> Optional[MappingEntry]:
        """Add or replace the entry for entry's physical input; returns the replaced one."""
        self._check(entry)
        with self._lock:
            old = self._entries.get(entry.key)
            self._entries[entry.key] = entry
        LOG.info("mapping %s %d -> %s %d (%s)%s", entry.source, entry.physical_index,
                 entry.target, entry.logical_index, entry.kind, "" if entry.enabled else " [disabled]")
        return old

    def remove_entry(self, source: str, physical_index: int) -> Optional[MappingEntry]:
        with self._lock:
            old = self._entries.pop((source, physical_index), None)
        if old is not None:
            LOG.info("mapping for %s %d removed", source, physical_index)
        return old

    def set_enabled(self, source: str, physical_index: int, enabled: bool):
        with self._lock:
            e = self._entries.get((source, physical_index))
            if e is None:
                raise KeyError(f"no mapping for {source} {physical_index}")
            self._entries[e.key] = replace(e, enabled=enabled)
        LOG.info("mapping for %s %d %s", source, physical_index, "enabled" if enabled else "disabled")

    def enable(self, source: str, physical_index: int):
        self.set_enabled(source, physical_index, True)

    def disable(self, source: str, physical_index: int):
        self.set_enabled(source, physical_index, False)

    # --- queries -------------------------------------------------------

    def entry(self, source: str, physical_index: int) -> Optional[MappingEntry]:
        with self._lock:
            return self._entries.get((source, physical_index))

    def entries(self) -> List[MappingEntry]:
        with self._lock:
            return sorted(self._entries.values(), key=lambda e: (e.source, e.physical_index))

    def sources_for(self, target: str, logical_index: int) -> List[MappingEntry]:
        """Reverse lookup: enabled entries that feed the given logical input."""
        return [e for e in self.entries()
                if e.enabled and e.target == target and e.logical_index == logical_index]

    def __eq__(self, other):
        if not isinstance(other, MappingTable):
            return NotImplemented
        return (self.axis_count == other.axis_count
                and self.button_count == other.button_count
                and self.entries() == other.entries())

    def __repr__(self):
        return f"<MappingTable axes={self.axis_count} buttons={self.button_count} entries={len(self._entries)}>"

    # --- resolving -----------------------------------------------------

    def resolve(self, sample: RawSample) -> Optional[LogicalEvent]:
        with self._lock:
            e = self._entries.get((sample.kind, sample.index))
        if e is None:
            LOG.debug("no mapping for %s %d", sample.kind, sample.index)
            return None
        if not e.enabled:
            return None

        if e.kind == AXIS:
            return LogicalEvent(AXIS, e.logical_index, int(sample.value), True, sample.timestamp)
        if e.kind == BUTTON:
            return LogicalEvent(BUTTON, e.logical_index, bool(sample.value), False, sample.timestamp)
        if e.kind == AXIS_TO_BUTTON:
            limit = e.threshold * self.native_max
            if e.threshold > 0:
                pressed = sample.value >= limit
            else:
                pressed = sample.value <= limit
            return LogicalEvent(BUTTON, e.logical_index, pressed, False, sample.timestamp)
        # BUTTON_TO_AXIS
        val = e.pressed_value if sample.value else e.released_value
        return LogicalEvent(AXIS, e.logical_index, val, False, sample.timestamp)

    # --- persistence ---------------------------------------------------

    def to_dict(self) -> dict:
        return {
            "axis_count": self.axis_count,
            "button_count": self.button_count,
            "entries": [e.to_dict() for e in self.entries()],
        }

    @classmethod
    def from_dict(cls, data: dict, native_max: int = NATIVE_AXIS_MAX):
        axis_count = data["axis_count"]
        button_count = data["button_count"]
        for name, v in (("axis_count", axis_count), ("button_count", button_count)):
            if isinstance(v, bool) or not isinstance(v, int) or v < 0:
                raise ValueError(f"{name} must be a non-negative integer, got {v!r}")
        entries = [MappingEntry.from_dict(d) for d in data.get("entries") or []]
        keys = [e.key for e in entries]
        if len(set(keys)) != len(keys):
            raise ValueError("a physical input is mapped more than once")
        return cls(axis_count, button_count, entries, native_max=native_max)
