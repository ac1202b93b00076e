"""Decoder for Linux joystick API (joydev) event records

Each record is a `struct js_event`:

    __u32 time;    /* event timestamp in milliseconds */
    __s16 value;   /* value */
    __u8 type;     /* event type */
    __u8 number;   /* axis/button number */

Decoding is purely syntactic: no mapping or normalization happens here.
"""
import logging
import struct

from core.state import AXIS, BUTTON, RawSample

LOG = logging.getLogger("jscal.decoder")

JS_EVENT_BUTTON = 0x01
JS_EVENT_AXIS = 0x02
JS_EVENT_INIT = 0x80

JS_EVENT = struct.Struct("=IhBB")  # host byte order, no padding
JS_EVENT_SIZE = JS_EVENT.size  # 8


class EventDecoder:
    """Turns joydev records into RawSample objects; anything malformed is ignored."""

    def __init__(self):
        self.ignored = 0

    def decode(self, data):
        """Return a RawSample, or None when the record is ignored."""
        if data is None or len(data) != JS_EVENT_SIZE:
            return self._ignore("bad record length %s", None if data is None else len(data))

        timestamp, value, etype, number = JS_EVENT.unpack(bytes(data))
        initial = bool(etype & JS_EVENT_INIT)
        kind = etype & ~JS_EVENT_INIT

        if kind == JS_EVENT_AXIS:
            return RawSample(AXIS, number, value, timestamp, initial)
        if kind == JS_EVENT_BUTTON:
            if value not in (0, 1):
                return self._ignore("button %d with value %d", number, value)
            return RawSample(BUTTON, number, value == 1, timestamp, initial)
        return self._ignore("unknown event type 0x%02x", etype)

    def decode_many(self, buf):
        """Decode a buffer holding several records; a trailing partial record is dropped."""
        samples = []
        usable = len(buf) - len(buf) % JS_EVENT_SIZE
        if usable != len(buf):
            self._ignore("trailing %d bytes", len(buf) - usable)
        for off in range(0, usable, JS_EVENT_SIZE):
            sample = self.decode(buf[off:off + JS_EVENT_SIZE])
            if sample is not None:
                samples.append(sample)
        return samples

    def _ignore(self, msg, *args):
        self.ignored += 1
        LOG.debug("ignoring record: " + msg, *args)
        return None
