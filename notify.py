
import logging
import threading
from typing import Any, Callable, List

logger = logging.getLogger(__name__)

Observer = Callable[[Any], None]


class Subscription:
    """Handle returned by subscribe(); cancel() detaches the observer."""
    __slots__ = ("_hub", "observer", "active")

    def __init__(self, hub: "NotificationHub", observer: Observer):
        self._hub = hub
        self.observer = observer
        self.active = True

    def cancel(self):
        if self.active:
            self.active = False
            self._hub._remove(self)


class NotificationHub:
    """
    Append-only observer registry, called synchronously in registration order.
    One failing observer is logged and skipped; the rest still run.
    """
    def __init__(self):
        self._subs: List[Subscription] = []
        self.errors = 0
        self.lock = threading.Lock()

    def __len__(self) -> int:
        with self.lock:
            return len(self._subs)

    def subscribe(self, observer: Observer) -> Subscription:
        if not callable(observer):
            raise TypeError(f"observer must be callable, got {type(observer).__name__}")
        sub = Subscription(self, observer)
        with self.lock:
            self._subs.append(sub)
        return sub

    def notify(self, value: Any) -> int:
        with self.lock:
            subs = list(self._subs)
        delivered = 0
        for sub in subs:
            if not sub.active:
                continue
            try:
                sub.observer(value)
            except Exception:
                with self.lock:
                    self.errors += 1
                logger.exception(
                    "notify.observer_failed",
                    extra={"observer": getattr(sub.observer, "__qualname__", repr(sub.observer))},
                )
                continue
            delivered += 1
        return delivered

    def _remove(self, sub: Subscription):
        with self.lock:
            try:
                self._subs.remove(sub)
            except ValueError:
                pass
