"""Entry point for jscal

Lists joystick devices, or opens the given ones with their saved calibration
and mapping and prints their live state until interrupted.
"""
import argparse
import logging
import sys
import threading

from core.errors import ConfigCorrupt, DeviceUnavailable
from core.reader import DeviceReader
from devices.joystick import JoystickDevice, list_devices
from devices.sdl_joystick import SdlDeviceHandle, list_joysticks
from mapper import MappingTable
from profiles import ProfileStore

LOG = logging.getLogger("jscal")

VERSION = "0.1.0"


def format_state(state, simple=False):
    if simple:
        axes = " ".join(f"{v:+.2f}" for v in state.axes)
    else:
        axes = " ".join(f"A{i}:{v:+.3f}" for i, v in enumerate(state.axes))
    buttons = "".join("1" if b else "0" for b in state.buttons)
    return f"{state.device}: {axes} | {buttons}"


def open_readers(args, store, mapping=None):
    """Open every requested device; on failure the readers built so far are stopped."""
    readers = []
    try:
        for path in args.devices:
            try:
                handle = JoystickDevice.open(path)
            except DeviceUnavailable as e:
                LOG.error("%s", e)
                continue
            readers.append(_make_reader(handle, store, mapping, clear_correction=args.clear_correction))
        for index in args.sdl:
            try:
                handle = SdlDeviceHandle.open(index)
            except DeviceUnavailable as e:
                LOG.error("%s", e)
                continue
            readers.append(_make_reader(handle, store, mapping))
    except BaseException:
        for r in readers:
            r.stop()
        raise
    return readers


def _make_reader(handle, store, mapping=None, clear_correction=False):
    try:
        if clear_correction:
            handle.clear_kernel_correction()
        profile = store.load_or_default(handle.descriptor())
        if mapping is not None:
            # each device gets its own copy so edits stay per device
            profile.mapping = MappingTable.from_dict(mapping.to_dict(), native_max=mapping.native_max)
        return DeviceReader(handle, profile.mapping, profile.engine())
    except BaseException:
        handle.close()
        raise


def main(argv=None):
    parser = argparse.ArgumentParser(description="jscal: joystick tester and calibration core")
    parser.add_argument("devices", nargs="*", help="joystick device files, e.g. /dev/input/js0")
    parser.add_argument("--list", action="store_true", help="list joystick devices and exit")
    parser.add_argument("-v", "--version", action="version", version=f"jscal {VERSION}")
    parser.add_argument("--sdl", type=int, action="append", default=[],
                        help="also open SDL (pygame) joystick with this index")
    parser.add_argument("--config-dir", default=None, help="calibration/mapping directory (default: ~/.config/jscal)")
    parser.add_argument("--profile", help="YAML mapping profile overriding the saved mapping")
    parser.add_argument("--clear-correction", action="store_true",
                        help="disable the kernel's joydev correction before reading")
    parser.add_argument("--simple", action="store_true", help="terse state lines")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                        help="Logging level (default: INFO)")
    parser.add_argument("--log-format", default="%(levelname)s:%(name)s:%(message)s",
                        help="Logging format string (default: %(levelname)s:%(name)s:%(message)s)")
    parser.add_argument("--debug-modules", nargs="*", default=[],
                        help="Modules to set to DEBUG level (e.g. 'device', 'decoder', 'mapper', 'calibration')")
    args = parser.parse_args(argv)

    logging.basicConfig(level=getattr(logging, args.log_level), format=args.log_format)
    for module in args.debug_modules:
        logging.getLogger(f"jscal.{module}").setLevel(logging.DEBUG)

    if args.list or (not args.devices and not args.sdl):
        for path in list_devices():
            try:
                with JoystickDevice.open(path) as dev:
                    desc = dev.descriptor()
                print(f"{path}: {desc.name} ({desc.axis_count} axes, {desc.button_count} buttons)")
            except DeviceUnavailable as e:
                print(f"{path}: unavailable ({e.reason})")
        for index, name in list_joysticks():
            print(f"sdl:{index}: {name}")
        return 0

    mapping = None
    if args.profile:
        try:
            mapping = MappingTable.load_profile(args.profile)
        except (OSError, ConfigCorrupt) as e:
            LOG.error("cannot use mapping profile %s: %s", args.profile, e)
            return 1

    store = ProfileStore(args.config_dir)
    readers = open_readers(args, store, mapping)
    if not readers:
        return 1

    stop_event = threading.Event()
    lock = threading.Lock()

    def watch(reader):
        def on_change(_change):
            with lock:
                print(format_state(reader.snapshot(), args.simple), flush=True)

        def on_disconnect(desc):
            LOG.warning("%s (%s) went away", desc.path, desc.name)
            if all(r.disconnected.is_set() for r in readers):
                stop_event.set()

        reader.subscribe(on_change)
        reader.on_disconnect.subscribe(on_disconnect)

    for r in readers:
        watch(r)

    try:
        for r in readers:
            r.start()
        LOG.info("jscal running — press Ctrl+C to stop")
        while not stop_event.is_set():
            stop_event.wait(0.5)
    except KeyboardInterrupt:
        LOG.info("shutdown requested")
    finally:
        for r in readers:
            r.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
