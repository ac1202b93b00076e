"""Persistence of calibration + mapping per device identity (YAML files)"""
import hashlib
import logging
import os
import re
import tempfile
from dataclasses import dataclass, field
from typing import Dict, Optional

import yaml

from calibration import CalibrationEngine, CalibrationRecord
from core.errors import ConfigCorrupt
from core.state import DeviceDescriptor
from mapper import MappingTable

LOG = logging.getLogger("jscal.profiles")

FORMAT_VERSION = 1


def default_config_dir() -> str:
    base = os.environ.get("XDG_CONFIG_HOME") or os.path.join(os.path.expanduser("~"), ".config")
    return os.path.join(base, "jscal")


@dataclass
class Profile:
    mapping: MappingTable
    calibrations: Dict[int, CalibrationRecord] = field(default_factory=dict)

    @classmethod
    def default(cls, desc: DeviceDescriptor) -> "Profile":
        """Identity mapping; full native range, no deadzone, not inverted."""
        lo, hi = desc.axis_range
        mapping = MappingTable.identity(desc.axis_count, desc.button_count, native_max=hi)
        rec = CalibrationRecord(min=lo, center=(lo + hi) // 2, max=hi)
        return cls(mapping, {i: rec for i in range(desc.axis_count)})

    def engine(self) -> CalibrationEngine:
        return CalibrationEngine(self.calibrations)


class ProfileStore:
    """One YAML file per device identity under `directory`.

    Saves go to a temp file in the same directory which is then renamed over
    the target, so a crash mid-save never leaves a half-written record.
    """

    def __init__(self, directory: Optional[str] = None):
        self.directory = directory or default_config_dir()

    def path_for(self, identity: str) -> str:
        slug = re.sub(r"[^A-Za-z0-9]+", "_", identity).strip("_")[:48] or "device"
        digest = hashlib.sha1(identity.encode("utf-8")).hexdigest()[:8]
        return os.path.join(self.directory, f"{slug}-{digest}.yaml")

    def load(self, identity: str) -> Optional[Profile]:
        """Saved profile for `identity`, None if there is none; ConfigCorrupt if unusable."""
        path = self.path_for(identity)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigCorrupt(path, f"unreadable: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigCorrupt(path, f"invalid YAML: {e}") from e

        profile = self._parse(path, identity, data)
        LOG.info("loaded profile for %s from %s", identity, path)
        return profile

    def _parse(self, path, identity, data) -> Profile:
        if not isinstance(data, dict):
            raise ConfigCorrupt(path, "top level is not a mapping")
        if data.get("identity") != identity:
            raise ConfigCorrupt(path, f"record belongs to {data.get('identity')!r}")
        if data.get("version") != FORMAT_VERSION:
            raise ConfigCorrupt(path, f"unsupported format version {data.get('version')!r}")
        try:
            mapping = MappingTable.from_dict(data["mapping"])
            calibrations = {}
            for axis, rec in (data.get("calibration") or {}).items():
                if isinstance(axis, bool) or not isinstance(axis, int) or axis < 0:
                    raise ValueError(f"bad axis index {axis!r}")
                calibrations[axis] = CalibrationRecord.from_dict(rec)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ConfigCorrupt(path, f"invalid record: {e!r}") from e
        return Profile(mapping, calibrations)

    def load_or_default(self, desc: DeviceDescriptor) -> Profile:
        try:
            profile = self.load(desc.identity)
        except ConfigCorrupt as e:
            LOG.warning("ignoring corrupt profile, using defaults: %s", e)
            profile = None
        if profile is None:
            return Profile.default(desc)
        return profile

    def save(self, identity: str, mapping: MappingTable, calibrations: Dict[int, CalibrationRecord]):
        os.makedirs(self.directory, exist_ok=True)
        path = self.path_for(identity)
        data = {
            "version": FORMAT_VERSION,
            "identity": identity,
            "mapping": mapping.to_dict(),
            "calibration": {axis: rec.to_dict() for axis, rec in sorted(calibrations.items())},
        }
        fd, tmp = tempfile.mkstemp(prefix=".tmp-", suffix=".yaml", dir=self.directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                yaml.safe_dump(data, f, sort_keys=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
        except BaseException:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise
        LOG.info("saved profile for %s to %s", identity, path)
        return path

    def save_profile(self, identity: str, profile: Profile):
        return self.save(identity, profile.mapping, profile.calibrations)

    def delete(self, identity: str) -> bool:
        try:
            os.unlink(self.path_for(identity))
        except FileNotFoundError:
            return False
        LOG.info("deleted profile for %s", identity)
        return True

    def identities(self):
        """Identities of all saved profiles (unreadable files are skipped)."""
        found = []
        if not os.path.isdir(self.directory):
            return found
        for name in sorted(os.listdir(self.directory)):
            if not name.endswith(".yaml") or name.startswith("."):
                continue
            try:
                with open(os.path.join(self.directory, name), "r", encoding="utf-8") as f:
                    data = yaml.safe_load(f)
            except (OSError, UnicodeDecodeError, yaml.YAMLError) as e:
                LOG.warning("skipping unreadable profile %s: %s", name, e)
                continue
            if isinstance(data, dict) and isinstance(data.get("identity"), str):
                found.append(data["identity"])
        return found
