"""Fan-out of state-change notifications to registered observers"""
import itertools
import logging
import threading

LOG = logging.getLogger("jscal.events")


class Subscription:
    """Handle returned by EventBus.subscribe()."""

    def __init__(self, bus, sub_id, callback):
        self._bus = bus
        self.id = sub_id
        self.callback = callback

    def unsubscribe(self):
        self._bus.unsubscribe(self)

    def __repr__(self):
        return f"<Subscription {self.id} {self.callback!r}>"


class EventBus:
    """Synchronous observer list.

    Observers run in subscription order on the publishing thread. publish()
    holds the bus lock for the whole fan-out, so the notifications of one event
    are never interleaved with those of the next.
    """

    def __init__(self, name="bus"):
        self.name = name
        self._subs = []
        self._ids = itertools.count(1)
        self._lock = threading.RLock()

    def subscribe(self, callback) -> Subscription:
        with self._lock:
            sub = Subscription(self, next(self._ids), callback)
            self._subs.append(sub)
        LOG.debug("%s: subscribed %r", self.name, sub)
        return sub

    def unsubscribe(self, sub: Subscription):
        with self._lock:
            if sub in self._subs:
                self._subs.remove(sub)
                LOG.debug("%s: unsubscribed %r", self.name, sub)

    def __len__(self):
        return len(self._subs)

    def publish(self, payload):
        with self._lock:
            for sub in list(self._subs):
                try:
                    sub.callback(payload)
                except Exception:
                    LOG.exception("%s: subscriber callback failed", self.name)
